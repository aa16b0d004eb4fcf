"""Alert service orchestrating detection, dedup, persistence and routing.

The single entry point for both alert sources: threshold detection on each
new MetricSnapshot, and release alerts produced by the ReleaseScheduler.
Rule logic is delegated to stateless functions in ``triggers.py``.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from market_monitor.alerts.config import AlertConfig
from market_monitor.alerts.dedup import Deduplicator
from market_monitor.alerts.schemas import Alert, MetricSnapshot
from market_monitor.alerts.triggers import detect_alerts
from market_monitor.observability.logging import pipeline_context
from market_monitor.observability.metrics import get_metrics

if TYPE_CHECKING:
    from market_monitor.notifications.router import NotificationRouter

logger = logging.getLogger(__name__)


class AlertService:
    """Detect → deduplicate → (persist + emit) → route.

    Safe to call concurrently from the snapshot path and the scheduler;
    the only shared state is the alert log, guarded by the repository's
    atomic insert.
    """

    def __init__(
        self,
        config: AlertConfig,
        deduplicator: Deduplicator,
        router: "NotificationRouter | None" = None,
    ) -> None:
        self._config = config
        self._dedup = deduplicator
        self._router = router

    @property
    def config(self) -> AlertConfig:
        return self._config

    async def emit(self, alert: Alert, window: timedelta | None = None) -> bool:
        """Pass one alert through dedup and, if new, route it.

        Routing failures are logged and never undo the emission.

        Args:
            alert: Alert to emit.
            window: Dedup window; defaults by origin (threshold or release).

        Returns:
            True if the alert was new and handed to the router.
        """
        if window is None:
            minutes = (
                self._config.release_dedup_window_minutes
                if alert.origin == "release"
                else self._config.dedup_window_minutes
            )
            window = timedelta(minutes=minutes)

        with pipeline_context(alert_id=alert.alert_id, alert_type=alert.alert_type):
            emitted = await self._dedup.try_emit(alert, window)
            get_metrics().record_emission(alert.origin, emitted)
            if not emitted:
                return False

            if self._router is not None:
                try:
                    await self._router.route(alert)
                except Exception as e:
                    logger.error("Notification routing failed for %s: %s", alert.alert_id, e)

        return True

    async def process_snapshot(self, snapshot: MetricSnapshot) -> list[Alert]:
        """Main entry point for threshold detection.

        Args:
            snapshot: Latest metric values from the collector.

        Returns:
            Alerts that were new and emitted.
        """
        candidates = detect_alerts(snapshot, self._config)
        for alert in candidates:
            get_metrics().alerts_detected.labels(alert_type=alert.alert_type).inc()

        emitted: list[Alert] = []
        for alert in candidates:
            if await self.emit(alert):
                emitted.append(alert)

        if candidates:
            logger.info(
                "Snapshot processed: %d candidates, %d emitted",
                len(candidates), len(emitted),
            )
        return emitted
