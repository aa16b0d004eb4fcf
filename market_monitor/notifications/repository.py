"""Subscriber repository.

Subscribers and their push endpoints are owned by the account system;
the notification core only reads them, deactivates push endpoints the
provider reports as gone, and records chat link state driven by bot
commands.
"""

import logging
from typing import Any

from market_monitor.notifications.chat_commands import ChatState
from market_monitor.notifications.schemas import PushEndpoint, Subscriber
from market_monitor.storage.database import Database

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS subscribers (
    subscriber_id TEXT PRIMARY KEY,
    email TEXT,
    email_enabled BOOLEAN NOT NULL DEFAULT FALSE,
    push_enabled BOOLEAN NOT NULL DEFAULT FALSE,
    chat_enabled BOOLEAN NOT NULL DEFAULT FALSE,
    chat_verified BOOLEAN NOT NULL DEFAULT FALSE,
    chat_handle TEXT UNIQUE,
    chat_state TEXT NOT NULL DEFAULT 'unverified',
    chat_verification_code TEXT,
    plan_tier TEXT NOT NULL DEFAULT 'free',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS push_endpoints (
    id BIGSERIAL PRIMARY KEY,
    subscriber_id TEXT NOT NULL REFERENCES subscribers(subscriber_id) ON DELETE CASCADE,
    endpoint TEXT NOT NULL UNIQUE,
    p256dh TEXT NOT NULL,
    auth TEXT NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_push_endpoints_subscriber
    ON push_endpoints(subscriber_id) WHERE active;
"""


class SubscriberRepository:
    """Read access to notifiable subscribers plus channel housekeeping."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create subscriber tables if they don't exist."""
        await self._db.execute(CREATE_TABLES_SQL)

    async def get_notifiable(self) -> list[Subscriber]:
        """Load every subscriber with at least one channel switched on.

        Push endpoints are attached from active rows only. Channel
        eligibility is left to the router.
        """
        rows = await self._db.fetch(
            """
            SELECT subscriber_id, email, email_enabled, push_enabled,
                   chat_enabled, chat_verified, chat_handle, plan_tier
            FROM subscribers
            WHERE email_enabled OR push_enabled OR chat_enabled
            ORDER BY subscriber_id
            """
        )
        if not rows:
            return []

        ids = [row["subscriber_id"] for row in rows]
        endpoint_rows = await self._db.fetch(
            """
            SELECT subscriber_id, endpoint, p256dh, auth
            FROM push_endpoints
            WHERE active AND subscriber_id = ANY($1::text[])
            ORDER BY id
            """,
            ids,
        )
        endpoints: dict[str, list[PushEndpoint]] = {}
        for row in endpoint_rows:
            endpoints.setdefault(row["subscriber_id"], []).append(
                PushEndpoint(
                    endpoint=row["endpoint"],
                    p256dh=row["p256dh"],
                    auth=row["auth"],
                )
            )

        return [
            _row_to_subscriber(row, endpoints.get(row["subscriber_id"], []))
            for row in rows
        ]

    async def deactivate_push_endpoint(self, subscriber_id: str, endpoint: str) -> bool:
        """Mark an expired push endpoint inactive.

        Returns:
            True if an active endpoint was deactivated.
        """
        result = await self._db.fetchval(
            """
            UPDATE push_endpoints SET active = FALSE
            WHERE subscriber_id = $1 AND endpoint = $2 AND active
            RETURNING id
            """,
            subscriber_id,
            endpoint,
        )
        if result is not None:
            logger.info("Deactivated push endpoint for subscriber %s", subscriber_id)
        return result is not None

    async def get_chat_state(self, chat_handle: str) -> ChatState:
        """Current chat state for a handle (UNVERIFIED if not linked)."""
        value = await self._db.fetchval(
            "SELECT chat_state FROM subscribers WHERE chat_handle = $1",
            chat_handle,
        )
        if value is None:
            return ChatState.UNVERIFIED
        try:
            return ChatState(value)
        except ValueError:
            logger.warning("Unknown chat_state %r for %s", value, chat_handle)
            return ChatState.UNVERIFIED

    async def link_chat(self, chat_handle: str, code: str) -> str | None:
        """Consume a verification code and bind the handle to its subscriber.

        A handle belongs to at most one subscriber. If another subscriber holds
        it, that link is dropped (handle cleared, chat back to unverified and
        disabled) in the same transaction.

        Returns:
            The linked subscriber_id, or None if the code is unknown.
        """
        async with self._db.transaction() as conn:
            subscriber_id = await conn.fetchval(
                """
                SELECT subscriber_id FROM subscribers
                WHERE chat_verification_code = $1
                FOR UPDATE
                """,
                code,
            )
            if subscriber_id is None:
                return None

            released = await conn.fetchval(
                """
                UPDATE subscribers
                SET chat_handle = NULL,
                    chat_state = $3,
                    chat_verified = FALSE,
                    chat_enabled = FALSE,
                    updated_at = NOW()
                WHERE chat_handle = $1 AND subscriber_id <> $2
                RETURNING subscriber_id
                """,
                chat_handle,
                subscriber_id,
                ChatState.UNVERIFIED.value,
            )
            if released is not None:
                logger.info("Chat %s moved from %s to %s", chat_handle, released, subscriber_id)

            await conn.execute(
                """
                UPDATE subscribers
                SET chat_handle = $1,
                    chat_verification_code = NULL,
                    updated_at = NOW()
                WHERE subscriber_id = $2
                """,
                chat_handle,
                subscriber_id,
            )
        return subscriber_id

    async def set_chat_state(self, chat_handle: str, state: ChatState) -> bool:
        """Persist a chat state transition.

        ``chat_verified`` and ``chat_enabled`` are derived from the state so
        the router sees the change on its next load.

        Returns:
            True if a linked subscriber was updated.
        """
        result = await self._db.fetchval(
            """
            UPDATE subscribers
            SET chat_state = $2,
                chat_verified = $3,
                chat_enabled = $4,
                updated_at = NOW()
            WHERE chat_handle = $1
            RETURNING subscriber_id
            """,
            chat_handle,
            state.value,
            state.is_verified,
            state.receives_alerts,
        )
        return result is not None


def _row_to_subscriber(row: Any, endpoints: list[PushEndpoint]) -> Subscriber:
    """Convert an asyncpg Record to a Subscriber."""
    return Subscriber(
        subscriber_id=row["subscriber_id"],
        email=row["email"],
        email_enabled=row["email_enabled"],
        push_enabled=row["push_enabled"],
        chat_enabled=row["chat_enabled"],
        chat_verified=row["chat_verified"],
        chat_handle=row["chat_handle"],
        push_endpoints=endpoints,
        plan_tier=row["plan_tier"],
    )
