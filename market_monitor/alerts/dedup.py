"""Alert deduplication against the persisted alert log.

Two alerts with the same dedup key inside the trailing window are the same
event. The log is the source of truth; there is no in-process cache.

Store failures fail open everywhere: if the log cannot be read or written
the alert is emitted without being recorded. A duplicate notification is
preferred over silently dropping a real alert.
"""

import logging
from datetime import timedelta

from market_monitor.alerts.repository import AlertRepository
from market_monitor.alerts.schemas import Alert
from market_monitor.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Deduplicator:
    """Check-and-record gate in front of notification routing."""

    def __init__(
        self,
        alert_repo: AlertRepository,
        default_window: timedelta = timedelta(hours=1),
        dedup_value_decimals: int = 2,
    ) -> None:
        self._repo = alert_repo
        self._default_window = default_window
        self._decimals = dedup_value_decimals

    async def should_emit(self, alert: Alert, window: timedelta | None = None) -> bool:
        """Return False if an equal alert is already logged inside the window.

        Read-only; pair with ``record`` or use ``try_emit`` for the atomic
        variant.
        """
        window = window or self._default_window
        key = alert.dedup_key(self._decimals)
        try:
            return not await self._repo.exists(key, window)
        except Exception as e:
            get_metrics().dedup_store_errors.inc()
            logger.warning("Dedup check failed for %s, emitting: %s", key, e)
            return True

    async def record(self, alert: Alert) -> Alert:
        """Persist an alert that passed ``should_emit`` and return it."""
        try:
            await self._repo.insert(alert)
        except Exception as e:
            get_metrics().dedup_store_errors.inc()
            logger.warning("Failed to record alert %s: %s", alert.alert_id, e)
        return alert

    async def try_emit(self, alert: Alert, window: timedelta | None = None) -> bool:
        """Atomically check and record.

        Args:
            alert: Candidate alert.
            window: Dedup window (defaults to the configured window).

        Returns:
            True if the alert is new and should be delivered.
        """
        window = window or self._default_window
        try:
            inserted = await self._repo.insert_if_absent(alert, window)
        except Exception as e:
            get_metrics().dedup_store_errors.inc()
            logger.warning(
                "Alert log unavailable, emitting %s unrecorded: %s",
                alert.alert_id, e,
            )
            return True

        if not inserted:
            logger.debug(
                "Alert deduplicated: %s", alert.dedup_key(self._decimals),
            )
        return inserted
