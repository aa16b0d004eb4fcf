"""Release calendar repository.

Each release row carries the set of notification flags already fired in a
``TEXT[]`` column. ``mark_flag`` appends a flag only if it is absent, so
the flag set only ever grows and survives restarts.
"""

import logging
from datetime import datetime
from typing import Any

from market_monitor.releases.schemas import (
    VALID_IMPACTS,
    VALID_RELEASE_KINDS,
    NotificationFlag,
    ScheduledRelease,
)
from market_monitor.storage.database import Database

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS scheduled_releases (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    title TEXT NOT NULL,
    scheduled_at TIMESTAMPTZ NOT NULL,
    timezone TEXT NOT NULL DEFAULT 'America/New_York',
    impact TEXT NOT NULL DEFAULT 'high',
    source TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL DEFAULT '',
    notifications_sent TEXT[] NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_scheduled_releases_at
    ON scheduled_releases(scheduled_at);
"""

# Existing flags are unioned with incoming ones so an upsert never un-fires.
_UPSERT_SQL = """
    INSERT INTO scheduled_releases (
        id, kind, title, scheduled_at, timezone, impact,
        source, description, url, notifications_sent
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
    ON CONFLICT (id) DO UPDATE SET
        kind = EXCLUDED.kind,
        title = EXCLUDED.title,
        scheduled_at = EXCLUDED.scheduled_at,
        timezone = EXCLUDED.timezone,
        impact = EXCLUDED.impact,
        source = EXCLUDED.source,
        description = EXCLUDED.description,
        url = EXCLUDED.url,
        notifications_sent = ARRAY(
            SELECT DISTINCT unnest(
                scheduled_releases.notifications_sent || EXCLUDED.notifications_sent
            )
        ),
        updated_at = NOW()
"""

_INSERT_SQL = """
    INSERT INTO scheduled_releases (
        id, kind, title, scheduled_at, timezone, impact,
        source, description, url, notifications_sent
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
    ON CONFLICT (id) DO NOTHING
    RETURNING id
"""

# Columns a caller may change through update_release.
UPDATABLE_FIELDS = frozenset(
    {"kind", "title", "scheduled_at", "timezone", "impact", "source", "description", "url"}
)


class ReleaseRepository:
    """Persistence for the release calendar."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the scheduled_releases table if it doesn't exist."""
        await self._db.execute(CREATE_TABLES_SQL)

    @staticmethod
    def _upsert_args(release: ScheduledRelease) -> tuple[Any, ...]:
        return (
            release.id,
            release.kind,
            release.title,
            release.scheduled_at,
            release.timezone,
            release.impact,
            release.source,
            release.description,
            release.url,
            sorted(f.value for f in release.notifications_sent),
        )

    async def load_releases(self) -> list[ScheduledRelease]:
        """Load the whole calendar ordered by release time."""
        rows = await self._db.fetch(
            "SELECT * FROM scheduled_releases ORDER BY scheduled_at"
        )
        return [_row_to_release(row) for row in rows]

    async def get_by_id(self, release_id: str) -> ScheduledRelease | None:
        row = await self._db.fetchrow(
            "SELECT * FROM scheduled_releases WHERE id = $1", release_id,
        )
        if row is None:
            return None
        return _row_to_release(row)

    async def save_releases(self, releases: list[ScheduledRelease]) -> int:
        """Upsert releases in one transaction.

        Returns:
            Number of releases written.
        """
        if not releases:
            return 0
        async with self._db.transaction() as conn:
            await conn.executemany(
                _UPSERT_SQL, [self._upsert_args(r) for r in releases],
            )
        return len(releases)

    async def mark_flag(self, release_id: str, flag: NotificationFlag) -> bool:
        """Record a fired flag unless it is already recorded.

        Returns:
            True if the flag was newly added.
        """
        result = await self._db.fetchval(
            """
            UPDATE scheduled_releases
            SET notifications_sent = array_append(notifications_sent, $2),
                updated_at = NOW()
            WHERE id = $1 AND NOT ($2 = ANY(notifications_sent))
            RETURNING id
            """,
            release_id,
            flag.value,
        )
        return result is not None

    async def add_release(self, release: ScheduledRelease) -> bool:
        """Insert a new release.

        Returns:
            False if a release with the same id already exists.
        """
        result = await self._db.fetchval(
            _INSERT_SQL, *self._upsert_args(release),
        )
        return result is not None

    async def update_release(
        self,
        release_id: str,
        updates: dict[str, Any],
    ) -> ScheduledRelease | None:
        """Apply a partial update.

        Raises:
            ValueError: If ``updates`` names a field that cannot be changed.

        Returns:
            The updated release, or None if it does not exist.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if "kind" in updates and updates["kind"] not in VALID_RELEASE_KINDS:
            raise ValueError(f"Invalid release kind {updates['kind']!r}")
        if "impact" in updates and updates["impact"] not in VALID_IMPACTS:
            raise ValueError(f"Invalid impact {updates['impact']!r}")
        if not updates:
            return await self.get_by_id(release_id)

        assignments: list[str] = []
        params: list[Any] = [release_id]
        for name, value in updates.items():
            if name == "scheduled_at" and isinstance(value, str):
                value = datetime.fromisoformat(value)
            params.append(value)
            assignments.append(f"{name} = ${len(params)}")

        row = await self._db.fetchrow(
            f"""
            UPDATE scheduled_releases
            SET {", ".join(assignments)}, updated_at = NOW()
            WHERE id = $1
            RETURNING *
            """,
            *params,
        )
        if row is None:
            return None
        return _row_to_release(row)

    async def delete_release(self, release_id: str) -> bool:
        status = await self._db.execute(
            "DELETE FROM scheduled_releases WHERE id = $1", release_id,
        )
        return status.endswith(" 1")


def _row_to_release(row: Any) -> ScheduledRelease:
    """Convert an asyncpg Record to a ScheduledRelease.

    Unknown flag strings are ignored rather than failing the whole load.
    """
    flags: set[NotificationFlag] = set()
    for value in row["notifications_sent"] or []:
        try:
            flags.add(NotificationFlag(value))
        except ValueError:
            logger.warning("Ignoring unknown flag %r on release %s", value, row["id"])

    return ScheduledRelease(
        id=row["id"],
        kind=row["kind"],
        title=row["title"],
        scheduled_at=row["scheduled_at"],
        timezone=row["timezone"],
        impact=row["impact"],
        source=row["source"],
        description=row["description"],
        url=row["url"],
        notifications_sent=flags,
    )
