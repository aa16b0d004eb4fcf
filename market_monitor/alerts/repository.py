"""Alert log repository.

Stores every emitted alert in the ``alerts`` table together with its dedup
key. ``insert_if_absent`` is the atomic check-then-insert the Deduplicator
relies on: it serialises callers with the same dedup key on a
transaction-scoped advisory lock, so a threshold alert and a release alert
racing on the same key cannot both be inserted.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from market_monitor.alerts.schemas import Alert, thaw_details
from market_monitor.storage.database import Database

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS alerts (
    alert_id TEXT PRIMARY KEY,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    metric TEXT NOT NULL,
    value DOUBLE PRECISION,
    message TEXT NOT NULL,
    details JSONB NOT NULL DEFAULT '{}',
    dedup_key TEXT NOT NULL,
    acknowledged BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alerts_dedup_key_created
    ON alerts(dedup_key, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_alerts_created_at
    ON alerts(created_at DESC);
"""

_INSERT_SQL = """
    INSERT INTO alerts (
        alert_id, alert_type, severity, metric, value,
        message, details, dedup_key, created_at
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
    RETURNING alert_id
"""


class AlertRepository:
    """Persistence and queries for the alert log."""

    def __init__(self, database: Database, dedup_value_decimals: int = 2) -> None:
        self._db = database
        self._decimals = dedup_value_decimals

    async def create_tables(self) -> None:
        """Create the alerts table and indexes if they don't exist."""
        await self._db.execute(CREATE_TABLES_SQL)

    def _insert_args(self, alert: Alert) -> tuple[Any, ...]:
        return (
            alert.alert_id,
            alert.alert_type,
            alert.severity,
            alert.metric,
            alert.value,
            alert.message,
            thaw_details(alert.details),
            alert.dedup_key(self._decimals),
            alert.created_at,
        )

    async def exists(self, dedup_key: str, window: timedelta) -> bool:
        """Check whether an alert with this key was stored inside the window.

        Args:
            dedup_key: Key from ``Alert.dedup_key``.
            window: Trailing window measured back from now.

        Returns:
            True if a matching alert exists.
        """
        cutoff = datetime.now(timezone.utc) - window
        sql = """
            SELECT EXISTS (
                SELECT 1 FROM alerts
                WHERE dedup_key = $1 AND created_at > $2
            )
        """
        return bool(await self._db.fetchval(sql, dedup_key, cutoff))

    async def insert(self, alert: Alert) -> str:
        """Insert an alert unconditionally.

        Returns:
            The stored alert_id.
        """
        return await self._db.fetchval(_INSERT_SQL, *self._insert_args(alert))

    async def insert_if_absent(self, alert: Alert, window: timedelta) -> bool:
        """Atomically insert the alert unless its dedup key is inside the window.

        Args:
            alert: Candidate alert.
            window: Dedup window.

        Returns:
            True if the alert was inserted, False if it was a duplicate.
        """
        key = alert.dedup_key(self._decimals)
        cutoff = datetime.now(timezone.utc) - window

        async with self._db.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)
            duplicate = await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM alerts
                    WHERE dedup_key = $1 AND created_at > $2
                )
                """,
                key,
                cutoff,
            )
            if duplicate:
                return False
            await conn.fetchval(_INSERT_SQL, *self._insert_args(alert))
            return True

    async def get_by_id(self, alert_id: str) -> Alert | None:
        """Get an alert by ID."""
        row = await self._db.fetchrow(
            "SELECT * FROM alerts WHERE alert_id = $1", alert_id,
        )
        if row is None:
            return None
        return _row_to_alert(row)

    async def get_recent(
        self,
        *,
        severity: str | None = None,
        alert_type: str | None = None,
        acknowledged: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        """Get recent alerts with optional filtering, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        param_idx = 1

        if severity is not None:
            conditions.append(f"severity = ${param_idx}")
            params.append(severity)
            param_idx += 1

        if alert_type is not None:
            conditions.append(f"alert_type = ${param_idx}")
            params.append(alert_type)
            param_idx += 1

        if acknowledged is not None:
            conditions.append(f"acknowledged = ${param_idx}")
            params.append(acknowledged)
            param_idx += 1

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        sql = f"""
            SELECT * FROM alerts
            {where_clause}
            ORDER BY created_at DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])

        rows = await self._db.fetch(sql, *params)
        return [_row_to_alert(row) for row in rows]

    async def acknowledge(self, alert_id: str) -> bool:
        """Mark an alert as acknowledged.

        Returns:
            True if updated, False if the alert was missing or already acknowledged.
        """
        sql = """
            UPDATE alerts SET acknowledged = TRUE
            WHERE alert_id = $1 AND acknowledged = FALSE
            RETURNING alert_id
        """
        result = await self._db.fetchval(sql, alert_id)
        return result is not None

    async def cleanup_older_than(self, days: int) -> int:
        """Delete alerts older than ``days`` days.

        Returns:
            Number of rows deleted.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        status = await self._db.execute(
            "DELETE FROM alerts WHERE created_at < $1", cutoff,
        )
        # asyncpg status looks like "DELETE 42"
        try:
            return int(status.split()[-1])
        except (ValueError, IndexError):
            return 0


def _row_to_alert(row: Any) -> Alert:
    """Convert an asyncpg Record to an Alert."""
    return Alert(
        alert_id=row["alert_id"],
        alert_type=row["alert_type"],
        severity=row["severity"],
        metric=row["metric"],
        value=row["value"],
        message=row["message"],
        details=row.get("details") or {},
        created_at=row["created_at"],
        acknowledged=row["acknowledged"],
    )
