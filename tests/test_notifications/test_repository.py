"""Tests for SubscriberRepository with mocked Database."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from market_monitor.notifications.chat_commands import ChatState
from market_monitor.notifications.repository import SubscriberRepository


@pytest.fixture
def mock_conn():
    return AsyncMock()


@pytest.fixture
def mock_db(mock_conn):
    db = AsyncMock()

    @asynccontextmanager
    async def _transaction():
        yield mock_conn

    db.transaction = _transaction
    return db


@pytest.fixture
def repo(mock_db):
    return SubscriberRepository(mock_db)


def _subscriber_row(**overrides):
    row = {
        "subscriber_id": "sub-1",
        "email": "a@example.com",
        "email_enabled": True,
        "push_enabled": True,
        "chat_enabled": False,
        "chat_verified": False,
        "chat_handle": None,
        "plan_tier": "premium",
    }
    row.update(overrides)
    return row


class TestGetNotifiable:
    """Subscriber loading with push endpoints."""

    @pytest.mark.asyncio
    async def test_attaches_endpoints(self, repo, mock_db):
        mock_db.fetch.side_effect = [
            [_subscriber_row(), _subscriber_row(subscriber_id="sub-2", plan_tier="free")],
            [{"subscriber_id": "sub-1", "endpoint": "https://push/1", "p256dh": "k", "auth": "a"}],
        ]

        subscribers = await repo.get_notifiable()

        assert [s.subscriber_id for s in subscribers] == ["sub-1", "sub-2"]
        assert subscribers[0].push_endpoints[0].endpoint == "https://push/1"
        assert subscribers[0].push_eligible
        assert subscribers[1].push_endpoints == []
        assert not subscribers[1].push_eligible
        assert mock_db.fetch.call_args.args[1] == ["sub-1", "sub-2"]

    @pytest.mark.asyncio
    async def test_empty(self, repo, mock_db):
        mock_db.fetch.return_value = []
        assert await repo.get_notifiable() == []
        assert mock_db.fetch.await_count == 1


class TestHousekeeping:
    """Push endpoint deactivation and chat state."""

    @pytest.mark.asyncio
    async def test_deactivate_push_endpoint(self, repo, mock_db):
        mock_db.fetchval.return_value = 7
        assert await repo.deactivate_push_endpoint("sub-1", "https://push/1") is True
        assert mock_db.fetchval.call_args.args[1:] == ("sub-1", "https://push/1")

    @pytest.mark.asyncio
    async def test_deactivate_already_inactive(self, repo, mock_db):
        mock_db.fetchval.return_value = None
        assert await repo.deactivate_push_endpoint("sub-1", "https://push/1") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "stored,expected",
        [
            (None, ChatState.UNVERIFIED),
            ("subscribed", ChatState.SUBSCRIBED),
            ("garbage", ChatState.UNVERIFIED),
        ],
    )
    async def test_get_chat_state(self, repo, mock_db, stored, expected):
        mock_db.fetchval.return_value = stored
        assert await repo.get_chat_state("1001") == expected

    @pytest.mark.asyncio
    async def test_set_chat_state_derives_flags(self, repo, mock_db):
        mock_db.fetchval.return_value = "sub-1"
        assert await repo.set_chat_state("1001", ChatState.SUBSCRIBED) is True
        assert mock_db.fetchval.call_args.args[1:] == ("1001", "subscribed", True, True)

        await repo.set_chat_state("1001", ChatState.UNSUBSCRIBED)
        assert mock_db.fetchval.call_args.args[1:] == ("1001", "unsubscribed", True, False)

    @pytest.mark.asyncio
    async def test_link_chat(self, repo, mock_conn):
        mock_conn.fetchval.side_effect = ["sub-1", None]

        assert await repo.link_chat("1001", "CODE") == "sub-1"

        lookup, release = mock_conn.fetchval.call_args_list
        assert lookup.args[1:] == ("CODE",)
        assert release.args[1:] == ("1001", "sub-1", "unverified")
        assert mock_conn.execute.call_args.args[1:] == ("1001", "sub-1")

    @pytest.mark.asyncio
    async def test_link_chat_unknown_code(self, repo, mock_conn):
        mock_conn.fetchval.return_value = None

        assert await repo.link_chat("1001", "NOPE") is None

        mock_conn.fetchval.assert_awaited_once()
        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_link_chat_moves_handle_from_other_subscriber(self, repo, mock_conn):
        mock_conn.fetchval.side_effect = ["sub-2", "sub-1"]

        assert await repo.link_chat("1001", "CODE") == "sub-2"

        release_sql = mock_conn.fetchval.call_args_list[1].args[0]
        link_sql = mock_conn.execute.call_args.args[0]
        assert "chat_handle = NULL" in release_sql
        assert "chat_enabled = FALSE" in release_sql
        assert "chat_verification_code = NULL" in link_sql
        assert mock_conn.execute.call_args.args[1:] == ("1001", "sub-2")
