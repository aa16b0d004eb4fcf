"""Deferred delivery queue for free-tier notifications.

Free-tier jobs are parked with a due time (now + delay) and dispatched by a
periodic flush. Backed by an in-process buffer by default, or by a Redis
list when a ``redis.asyncio`` client is supplied so parked jobs survive a
restart.

The buffer is swapped out under an ``asyncio.Lock``; dispatch always
happens after the lock is released.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from market_monitor.alerts.schemas import Alert
from market_monitor.notifications.dispatcher import NotificationDispatcher
from market_monitor.notifications.schemas import NotificationJob
from market_monitor.observability.logging import pipeline_context
from market_monitor.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass
class DeferredBatch:
    """Jobs for one alert, due for dispatch at ``due_at``."""

    due_at: datetime
    alert: Alert
    jobs: list[NotificationJob]

    def to_json(self) -> str:
        return json.dumps({
            "due_at": self.due_at.isoformat(),
            "jobs": [job.to_dict() for job in self.jobs],
        })

    @classmethod
    def from_json(cls, raw: str | bytes) -> "DeferredBatch":
        data = json.loads(raw)
        jobs = [NotificationJob.from_dict(j) for j in data["jobs"]]
        return cls(
            due_at=datetime.fromisoformat(data["due_at"]),
            alert=jobs[0].alert,
            jobs=jobs,
        )


class DeferredDeliveryQueue:
    """Holds jobs until their delay elapses, then hands them to the dispatcher.

    Usage:
        queue = DeferredDeliveryQueue(dispatcher, delay_seconds=30)
        await queue.enqueue(alert, jobs)
        asyncio.create_task(queue.run())
        ...
        queue.stop()

    The Redis variant assumes a single flusher per key.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        delay_seconds: float = 30.0,
        redis_client: Any | None = None,
        redis_key: str = "notify:deferred",
    ) -> None:
        self._dispatcher = dispatcher
        self._delay = timedelta(seconds=delay_seconds)
        self._redis = redis_client
        self._key = redis_key
        self._buffer: list[DeferredBatch] = []
        self._lock = asyncio.Lock()
        self._running = False

    @property
    def delay(self) -> timedelta:
        return self._delay

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    async def enqueue(
        self,
        alert: Alert,
        jobs: list[NotificationJob],
        now: datetime | None = None,
    ) -> datetime | None:
        """Park jobs for later dispatch.

        Returns:
            The due time, or None if there was nothing to park.
        """
        if not jobs:
            return None
        now = now or datetime.now(timezone.utc)
        batch = DeferredBatch(due_at=now + self._delay, alert=alert, jobs=list(jobs))

        if self._redis is not None:
            await self._redis.rpush(self._key, batch.to_json())
        else:
            async with self._lock:
                self._buffer.append(batch)

        get_metrics().deferred_queue_depth.inc(len(jobs))
        logger.debug(
            "Deferred %d jobs for alert %s until %s",
            len(jobs), alert.alert_id, batch.due_at.isoformat(),
        )
        return batch.due_at

    async def depth(self) -> int:
        """Number of parked batches."""
        if self._redis is not None:
            return await self._redis.llen(self._key)
        async with self._lock:
            return len(self._buffer)

    async def _take_due(self, now: datetime) -> list[DeferredBatch]:
        if self._redis is not None:
            return await self._take_due_redis(now)

        async with self._lock:
            due = [b for b in self._buffer if b.due_at <= now]
            self._buffer = [b for b in self._buffer if b.due_at > now]
        return due

    async def _take_due_redis(self, now: datetime) -> list[DeferredBatch]:
        # Due times are monotonic in push order, so the head is always oldest.
        due: list[DeferredBatch] = []
        while True:
            raw = await self._redis.lindex(self._key, 0)
            if raw is None:
                break
            try:
                batch = DeferredBatch.from_json(raw)
            except (ValueError, KeyError, IndexError) as e:
                logger.error("Dropping malformed deferred entry: %s", e)
                await self._redis.lpop(self._key)
                continue
            if batch.due_at > now:
                break
            await self._redis.lpop(self._key)
            due.append(batch)
        return due

    async def flush_due(self, now: datetime | None = None) -> int:
        """Dispatch every batch whose due time has passed.

        Returns:
            Number of jobs handed to the dispatcher.
        """
        now = now or datetime.now(timezone.utc)
        due = await self._take_due(now)

        dispatched = 0
        for batch in due:
            get_metrics().deferred_queue_depth.dec(len(batch.jobs))
            with pipeline_context(alert_id=batch.alert.alert_id, tier="deferred"):
                try:
                    await self._dispatcher.dispatch(batch.alert, batch.jobs, tier="deferred")
                except Exception as e:
                    logger.error(
                        "Deferred dispatch failed for alert %s: %s",
                        batch.alert.alert_id, e,
                    )
            dispatched += len(batch.jobs)
        return dispatched

    async def run(self, interval_seconds: float = 1.0) -> None:
        """Flush due batches until ``stop()`` is called."""
        self._running = True
        logger.info("Deferred delivery loop started (delay=%s)", self._delay)
        while self._running:
            try:
                await self.flush_due()
            except Exception as e:
                logger.error("Deferred flush failed: %s", e)
            await asyncio.sleep(interval_seconds)
        logger.info("Deferred delivery loop stopped")

    def stop(self) -> None:
        self._running = False
