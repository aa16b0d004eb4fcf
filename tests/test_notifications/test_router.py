"""Tests for tiered routing."""

from unittest.mock import AsyncMock

import pytest

from market_monitor.notifications.router import NotificationRouter, partition
from market_monitor.notifications.schemas import DeliveryResult, Subscriber


@pytest.fixture
def mock_dispatcher():
    dispatcher = AsyncMock()
    dispatcher.dispatch.return_value = [DeliveryResult(channel="mail", sent=1)]
    return dispatcher


@pytest.fixture
def mock_queue():
    return AsyncMock()


@pytest.fixture
def mock_subscriber_repo():
    return AsyncMock()


@pytest.fixture
def router(mock_subscriber_repo, mock_dispatcher, mock_queue):
    return NotificationRouter(mock_subscriber_repo, mock_dispatcher, mock_queue)


class TestPartition:
    """Pure job expansion."""

    def test_premium_immediate_free_deferred(self, sample_alert, premium_subscriber, free_subscriber):
        plan = partition(sample_alert, [premium_subscriber, free_subscriber])
        assert [j.channel for j in plan.immediate] == ["mail", "push", "chat"]
        assert [(j.subscriber.subscriber_id, j.channel) for j in plan.deferred] == [
            ("sub-free", "mail"),
        ]
        assert plan.total == 4

    def test_no_eligible_channels_dropped(self, sample_alert):
        nobody = Subscriber(subscriber_id="x", email="x@example.com", plan_tier="premium")
        assert partition(sample_alert, [nobody]).total == 0

    def test_chat_requires_verification(self, sample_alert):
        unverified = Subscriber(
            subscriber_id="x", chat_enabled=True, chat_handle="42", plan_tier="premium",
        )
        assert partition(sample_alert, [unverified]).total == 0

    def test_jobs_carry_alert(self, sample_alert, free_subscriber):
        plan = partition(sample_alert, [free_subscriber])
        assert plan.deferred[0].alert is sample_alert


class TestRoute:
    """Dispatch and deferral."""

    @pytest.mark.asyncio
    async def test_route_splits_tiers(
        self, router, mock_dispatcher, mock_queue, sample_alert, premium_subscriber, free_subscriber,
    ):
        results = await router.route(sample_alert, [premium_subscriber, free_subscriber])

        assert results == mock_dispatcher.dispatch.return_value
        alert, immediate = mock_dispatcher.dispatch.call_args.args
        assert alert is sample_alert
        assert {j.subscriber.subscriber_id for j in immediate} == {"sub-premium"}
        queued_alert, deferred = mock_queue.enqueue.call_args.args
        assert queued_alert is sample_alert
        assert [j.subscriber.subscriber_id for j in deferred] == ["sub-free"]

    @pytest.mark.asyncio
    async def test_loads_subscribers(self, router, mock_subscriber_repo, sample_alert, premium_subscriber):
        mock_subscriber_repo.get_notifiable.return_value = [premium_subscriber]
        await router.route(sample_alert)
        mock_subscriber_repo.get_notifiable.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_load_failure(self, router, mock_subscriber_repo, mock_dispatcher, sample_alert):
        mock_subscriber_repo.get_notifiable.side_effect = ConnectionError("db down")
        assert await router.route(sample_alert) == []
        mock_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_free_only(self, router, mock_dispatcher, mock_queue, sample_alert, free_subscriber):
        mock_dispatcher.dispatch.return_value = []
        assert await router.route(sample_alert, [free_subscriber]) == []
        mock_queue.enqueue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_premium_only_does_not_enqueue(self, router, mock_queue, sample_alert, premium_subscriber):
        await router.route(sample_alert, [premium_subscriber])
        mock_queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nobody_eligible(self, router, mock_dispatcher, sample_alert):
        assert await router.route(sample_alert, []) == []
        mock_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_enqueue_failure_keeps_results(
        self, router, mock_queue, sample_alert, premium_subscriber, free_subscriber,
    ):
        mock_queue.enqueue.side_effect = ConnectionError("redis down")
        results = await router.route(sample_alert, [premium_subscriber, free_subscriber])
        assert results[0].sent == 1
