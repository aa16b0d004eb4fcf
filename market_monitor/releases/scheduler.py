"""Release scheduler driving calendar-based notifications.

Runs on its own clock. On every tick each release is checked against its
trigger windows; a window is one poll interval wide, so a flag is due on
exactly one tick of the fixed-rate grid. A window that passes while the
process is down is skipped for good.

Per due flag the side effect runs first (prediction, snapshot, analysis,
alert emission), then the flag is recorded on the release and persisted.
A flag already in ``notifications_sent`` is never fired again.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from market_monitor.alerts.schemas import Alert, MetricSnapshot
from market_monitor.alerts.service import AlertService
from market_monitor.observability.logging import pipeline_context
from market_monitor.observability.metrics import get_metrics
from market_monitor.releases import calendar
from market_monitor.releases.collaborators import ReleaseAnalyst, SnapshotProvider
from market_monitor.releases.config import SchedulerConfig
from market_monitor.releases.repository import ReleaseRepository
from market_monitor.releases.schemas import (
    NotificationFlag,
    ReleaseStats,
    ScheduledRelease,
)

logger = logging.getLogger(__name__)

FiredFlag = tuple[str, NotificationFlag]


def _local_time(release: ScheduledRelease) -> str:
    try:
        local = release.scheduled_at.astimezone(ZoneInfo(release.timezone))
    except (KeyError, ValueError):
        local = release.scheduled_at
    return local.strftime("%A %B %d, %H:%M %Z").strip()


class ReleaseScheduler:
    """Fires one-shot notifications around scheduled data releases."""

    def __init__(
        self,
        repository: ReleaseRepository,
        alert_service: AlertService,
        config: SchedulerConfig | None = None,
        analyst: ReleaseAnalyst | None = None,
        snapshot_provider: SnapshotProvider | None = None,
    ) -> None:
        self._repo = repository
        self._alerts = alert_service
        self._config = config or SchedulerConfig()
        self._analyst = analyst
        self._snapshots = snapshot_provider
        self._running = False

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    # ── Trigger windows ─────────────────────────────────────

    def trigger_windows(
        self,
        release: ScheduledRelease,
    ) -> list[tuple[NotificationFlag, datetime, datetime]]:
        """``(flag, start, end)`` for every flag; a flag is due when start <= now < end."""
        poll = timedelta(minutes=self._config.poll_interval_minutes)
        at = release.scheduled_at

        starts = [
            (NotificationFlag.WARNING_24H, at - timedelta(minutes=self._config.warning_minutes)),
        ]
        starts += [
            (NotificationFlag.for_minutes(k), at - timedelta(minutes=k))
            for k in self._config.countdown_minutes
        ]
        starts.append(
            (
                NotificationFlag.DATA_COLLECTED,
                at + timedelta(minutes=self._config.post_release_delay_minutes),
            )
        )
        return [(flag, start, start + poll) for flag, start in starts]

    def due_flags(self, release: ScheduledRelease, now: datetime) -> list[NotificationFlag]:
        """Flags whose window contains ``now`` and that have not fired yet."""
        return [
            flag
            for flag, start, end in self.trigger_windows(release)
            if start <= now < end and not release.has_fired(flag)
        ]

    # ── Tick ────────────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> list[FiredFlag]:
        """Run one scheduler pass.

        Args:
            now: Evaluation instant (defaults to the current UTC time).

        Returns:
            ``(release_id, flag)`` for every flag fired on this pass.
        """
        metrics = get_metrics()
        if not self._config.enabled:
            metrics.scheduler_ticks.labels(status="disabled").inc()
            return []

        now = now or datetime.now(timezone.utc)
        try:
            releases = await self._repo.load_releases()
        except Exception as e:
            metrics.scheduler_ticks.labels(status="store_error").inc()
            logger.error("Failed to load release calendar, skipping tick: %s", e)
            return []

        fired: list[FiredFlag] = []
        for release in releases:
            for flag in self.due_flags(release, now):
                with pipeline_context(release_id=release.id, flag=flag.value):
                    try:
                        await self._fire(release, flag)
                    except Exception as e:
                        logger.error(
                            "Release %s flag %s side effect failed: %s",
                            release.id, flag.value, e,
                        )
                        continue

                    release.notifications_sent.add(flag)
                    try:
                        await self._repo.mark_flag(release.id, flag)
                    except Exception as e:
                        logger.error(
                            "Failed to persist flag %s on release %s: %s",
                            flag.value, release.id, e,
                        )
                fired.append((release.id, flag))
                metrics.record_trigger(flag.value)

        metrics.scheduler_ticks.labels(status="ok").inc()
        if fired:
            logger.info(
                "Scheduler tick fired %d flags: %s",
                len(fired), [f"{rid}:{flag.value}" for rid, flag in fired],
            )
        return fired

    async def _fire(self, release: ScheduledRelease, flag: NotificationFlag) -> None:
        if flag == NotificationFlag.WARNING_24H:
            alert = await self._warning_alert(release)
        elif flag == NotificationFlag.DATA_COLLECTED:
            alert = await self._data_alert(release)
        else:
            alert = self._countdown_alert(release, flag.countdown_minutes)
        await self._alerts.emit(alert)

    # ── Alert builders ──────────────────────────────────────

    @staticmethod
    def _base_details(release: ScheduledRelease) -> dict[str, Any]:
        return {
            "release_id": release.id,
            "kind": release.kind,
            "title": release.title,
            "scheduled_at": release.scheduled_at.isoformat(),
            "impact": release.impact,
            "url": release.url,
        }

    async def _warning_alert(self, release: ScheduledRelease) -> Alert:
        prediction: dict[str, Any] = {"available": False}
        if self._analyst is not None:
            try:
                prediction = {"available": True, **await self._analyst.predict(release)}
            except Exception as e:
                logger.warning("Prediction unavailable for %s: %s", release.id, e)
                prediction = {"available": False, "error": str(e)}

        return Alert(
            alert_type="RELEASE_WARNING",
            severity=release.impact,
            metric=f"release:{release.id}",
            value=float(self._config.warning_minutes),
            message=f"{release.title} is due in 24 hours ({_local_time(release)})",
            details={**self._base_details(release), "prediction": prediction},
        )

    def _countdown_alert(self, release: ScheduledRelease, minutes: int) -> Alert:
        return Alert(
            alert_type="RELEASE_COUNTDOWN",
            severity=release.impact,
            metric=f"release:{release.id}",
            value=float(minutes),
            message=(
                f"{release.title} releases in {minutes} minutes "
                f"({_local_time(release)}). Impact: {release.impact.upper()}"
            ),
            details={**self._base_details(release), "minutes_until": minutes},
        )

    async def _data_alert(self, release: ScheduledRelease) -> Alert:
        snapshot: MetricSnapshot | None = None
        if self._snapshots is not None:
            try:
                snapshot = await self._snapshots.collect()
            except Exception as e:
                logger.warning("Snapshot collection failed for %s: %s", release.id, e)

        analysis: dict[str, Any] | None = None
        if self._analyst is not None:
            try:
                analysis = await self._analyst.analyze(release, snapshot)
            except Exception as e:
                logger.warning("Post-release analysis failed for %s: %s", release.id, e)

        details = self._base_details(release)
        if snapshot is not None:
            details["snapshot"] = snapshot.to_dict()
        if analysis is not None:
            details["analysis"] = analysis

        return Alert(
            alert_type="RELEASE_DATA",
            severity=release.impact,
            metric=f"release:{release.id}",
            value=None,
            message=f"{release.title} has been released; market data collected",
            details=details,
        )

    # ── Calendar queries ────────────────────────────────────

    async def upcoming(self, limit: int = 10, now: datetime | None = None) -> list[ScheduledRelease]:
        releases = await self._repo.load_releases()
        return calendar.upcoming(releases, now or datetime.now(timezone.utc), limit)

    async def next_high_impact(self, now: datetime | None = None) -> ScheduledRelease | None:
        releases = await self._repo.load_releases()
        return calendar.next_high_impact(releases, now or datetime.now(timezone.utc))

    async def stats(self, now: datetime | None = None) -> ReleaseStats:
        releases = await self._repo.load_releases()
        return calendar.stats(releases, now or datetime.now(timezone.utc))

    # ── Loop ────────────────────────────────────────────────

    async def run(self) -> None:
        """Tick at a fixed rate until ``stop()`` is called.

        Each pass is evaluated at its planned instant, one poll interval after
        the previous one, so slow ticks never shift the grid. A pass that
        overruns its period is followed immediately by the next one.
        """
        self._running = True
        interval = timedelta(minutes=self._config.poll_interval_minutes)
        logger.info("Release scheduler started (poll=%dm)", self._config.poll_interval_minutes)

        next_tick = datetime.now(timezone.utc)
        while self._running:
            with pipeline_context(tick=next_tick.isoformat()):
                try:
                    await self.tick(next_tick)
                except Exception as e:
                    logger.error("Scheduler tick at %s failed: %s", next_tick.isoformat(), e)

            next_tick += interval
            delay = (next_tick - datetime.now(timezone.utc)).total_seconds()
            if delay < 0:
                logger.warning("Scheduler running %.0fs behind, catching up", -delay)
            await asyncio.sleep(max(0.0, delay))
        logger.info("Release scheduler stopped")

    def stop(self) -> None:
        self._running = False
