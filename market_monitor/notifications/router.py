"""Tiered notification routing.

Expands an emitted alert into NotificationJobs, one per (subscriber,
eligible channel). Premium subscribers are dispatched immediately; free
subscribers are parked on the DeferredDeliveryQueue.
"""

import logging
from dataclasses import dataclass, field

from market_monitor.alerts.schemas import Alert
from market_monitor.notifications.deferred import DeferredDeliveryQueue
from market_monitor.notifications.dispatcher import NotificationDispatcher
from market_monitor.notifications.repository import SubscriberRepository
from market_monitor.notifications.schemas import (
    DeliveryResult,
    NotificationJob,
    Subscriber,
)

logger = logging.getLogger(__name__)


@dataclass
class RoutingPlan:
    """Jobs split by delivery tier."""

    immediate: list[NotificationJob] = field(default_factory=list)
    deferred: list[NotificationJob] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.immediate) + len(self.deferred)


def partition(alert: Alert, subscribers: list[Subscriber]) -> RoutingPlan:
    """Build the routing plan for one alert.

    Pure: subscribers with no eligible channel are dropped, and every
    remaining subscriber yields one job per eligible channel.
    """
    plan = RoutingPlan()
    for subscriber in subscribers:
        channels = subscriber.eligible_channels()
        if not channels:
            continue
        jobs = [NotificationJob(alert=alert, subscriber=subscriber, channel=c) for c in channels]
        if subscriber.is_premium:
            plan.immediate.extend(jobs)
        else:
            plan.deferred.extend(jobs)
    return plan


class NotificationRouter:
    """Routes emitted alerts to the dispatcher by subscription tier."""

    def __init__(
        self,
        subscriber_repo: SubscriberRepository,
        dispatcher: NotificationDispatcher,
        deferred_queue: DeferredDeliveryQueue,
    ) -> None:
        self._subscribers = subscriber_repo
        self._dispatcher = dispatcher
        self._deferred = deferred_queue

    def partition(self, alert: Alert, subscribers: list[Subscriber]) -> RoutingPlan:
        return partition(alert, subscribers)

    async def route(
        self,
        alert: Alert,
        subscribers: list[Subscriber] | None = None,
    ) -> list[DeliveryResult]:
        """Deliver an alert to premium subscribers now and queue the rest.

        Args:
            alert: Alert that passed deduplication.
            subscribers: Recipients; loaded from the repository when omitted.

        Returns:
            DeliveryResults of the immediate dispatch.
        """
        if subscribers is None:
            try:
                subscribers = await self._subscribers.get_notifiable()
            except Exception as e:
                logger.error(
                    "Failed to load subscribers for alert %s: %s",
                    alert.alert_id, e,
                )
                return []

        plan = self.partition(alert, subscribers)
        if plan.total == 0:
            logger.debug("No eligible recipients for alert %s", alert.alert_id)
            return []

        results = await self._dispatcher.dispatch(alert, plan.immediate)

        if plan.deferred:
            try:
                await self._deferred.enqueue(alert, plan.deferred)
            except Exception as e:
                logger.error(
                    "Failed to defer %d jobs for alert %s: %s",
                    len(plan.deferred), alert.alert_id, e,
                )

        logger.info(
            "Routed alert %s: %d immediate, %d deferred",
            alert.alert_id, len(plan.immediate), len(plan.deferred),
        )
        return results
