"""Notification dispatcher fanning one alert out across channels.

Jobs are grouped by channel and each channel receives a single bulk call;
the channel calls run concurrently. A channel that raises is reported as
a failed DeliveryResult for its own recipients and never affects the
others (graceful degradation).

Pattern: Orchestrator (like AlertService), delegates to stateless channels.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from market_monitor.alerts.schemas import Alert
from market_monitor.notifications.channels import CircuitBreaker, NotificationChannel
from market_monitor.notifications.config import NotificationConfig
from market_monitor.notifications.schemas import (
    DeliveryResult,
    NotificationJob,
    Subscriber,
)
from market_monitor.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# (subscriber_id, endpoint) -> deactivate it
ExpiredEndpointHandler = Callable[[str, str], Awaitable[object]]


class NotificationDispatcher:
    """Delivers NotificationJobs through circuit-breaker-wrapped channels."""

    def __init__(
        self,
        channels: list[NotificationChannel],
        config: NotificationConfig | None = None,
        on_expired: ExpiredEndpointHandler | None = None,
    ) -> None:
        self._config = config or NotificationConfig()
        self._on_expired = on_expired

        self._channels: dict[str, CircuitBreaker] = {}
        for ch in channels:
            if isinstance(ch, CircuitBreaker):
                self._channels[ch.name] = ch
            else:
                self._channels[ch.name] = CircuitBreaker(
                    channel=ch,
                    failure_threshold=self._config.circuit_breaker_threshold,
                    recovery_timeout=self._config.circuit_breaker_recovery_seconds,
                )

    @property
    def channels(self) -> list[CircuitBreaker]:
        """Access wrapped channels (for inspection/testing)."""
        return list(self._channels.values())

    def set_expired_handler(self, handler: ExpiredEndpointHandler | None) -> None:
        self._on_expired = handler

    async def dispatch(
        self,
        alert: Alert,
        jobs: list[NotificationJob],
        tier: str = "immediate",
    ) -> list[DeliveryResult]:
        """Deliver an alert for a batch of jobs.

        Never raises for channel errors.

        Args:
            alert: Alert being delivered.
            jobs: Jobs for this alert; each is consumed exactly once.
            tier: Label for the latency histogram (immediate, deferred).

        Returns:
            One DeliveryResult per channel that had jobs.
        """
        if not jobs:
            return []

        groups: dict[str, list[Subscriber]] = {}
        for job in jobs:
            groups.setdefault(job.channel, []).append(job.subscriber)

        results: list[DeliveryResult] = []
        pending: list[tuple[str, list[Subscriber]]] = []
        for name, recipients in groups.items():
            if name in self._channels:
                pending.append((name, recipients))
            else:
                logger.debug(
                    "Channel %s not configured, skipping %d recipients",
                    name, len(recipients),
                )
                results.append(DeliveryResult(channel=name, skipped=len(recipients)))

        start = time.perf_counter()
        outcomes = await asyncio.gather(
            *(
                self._channels[name].send_bulk(recipients, alert)
                for name, recipients in pending
            ),
            return_exceptions=True,
        )
        get_metrics().dispatch_latency.labels(tier=tier).observe(
            time.perf_counter() - start
        )

        for (name, recipients), outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Channel %s raised for alert %s: %s",
                    name, alert.alert_id, outcome,
                )
                outcome = DeliveryResult(channel=name, failed=len(recipients))
            results.append(outcome)

        for result in results:
            get_metrics().record_delivery(
                result.channel,
                sent=result.sent,
                failed=result.failed,
                expired=result.expired,
                skipped=result.skipped,
            )

        await self._report_expired(results)
        self._record_delivery(alert, results)
        return results

    async def _report_expired(self, results: list[DeliveryResult]) -> None:
        if self._on_expired is None:
            return
        for result in results:
            for subscriber_id, endpoint in result.expired_endpoints:
                try:
                    await self._on_expired(subscriber_id, endpoint)
                except Exception as e:
                    logger.warning(
                        "Failed to deactivate push endpoint for %s: %s",
                        subscriber_id, e,
                    )

    def _record_delivery(
        self,
        alert: Alert,
        results: list[DeliveryResult],
    ) -> None:
        """Log delivery results.

        Args:
            alert: Delivered alert.
            results: Per-channel delivery outcomes.
        """
        failures = [r.channel for r in results if r.failed]
        delivered = [r.channel for r in results if r.sent]

        if failures and not delivered:
            logger.error(
                "Alert %s (%s) failed ALL channels: %s",
                alert.alert_id, alert.severity, failures,
            )
        elif failures:
            logger.warning(
                "Alert %s partial delivery: ok=%s failed=%s",
                alert.alert_id, delivered, failures,
            )
        else:
            logger.debug(
                "Alert %s delivered: %s",
                alert.alert_id, [r.to_dict() for r in results],
            )
