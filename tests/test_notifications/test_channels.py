"""Tests for channel adapters and the circuit breaker."""

from unittest.mock import AsyncMock, patch

import aiosmtplib
import httpx
import pytest

from market_monitor.notifications.channels import (
    ChatChannel,
    CircuitBreaker,
    CircuitState,
    MailChannel,
    NotificationChannel,
    PushChannel,
)
from market_monitor.notifications.retry import RetryPolicy
from market_monitor.notifications.schemas import DeliveryResult, PushEndpoint, Subscriber


def _mock_response(status_code: int = 200) -> httpx.Response:
    """Create a mock httpx.Response."""
    return httpx.Response(status_code=status_code, request=httpx.Request("POST", "http://test"))


def _patch_client(mock_client_cls, mock_client):
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)


FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.0, jitter_range=0.0)


# ── MailChannel ─────────────────────────────────────────


class TestMailChannel:
    """SMTP delivery."""

    @pytest.mark.asyncio
    async def test_sends_one_message_per_recipient(self, sample_alert, premium_subscriber, free_subscriber):
        channel = MailChannel(host="smtp.example.com", sender="alerts@example.com")

        with patch("market_monitor.notifications.channels.aiosmtplib.send", new=AsyncMock()) as send:
            result = await channel.send_bulk([premium_subscriber, free_subscriber], sample_alert)

        assert result.sent == 2
        assert send.await_count == 2
        msg = send.call_args_list[0].args[0]
        assert msg["To"] == "pro@example.com"
        assert msg["From"] == "alerts@example.com"
        assert "BTC EXTREME INFLOW" in msg["Subject"]
        assert send.call_args.kwargs["hostname"] == "smtp.example.com"
        assert send.call_args.kwargs["start_tls"] is True

    @pytest.mark.asyncio
    async def test_ineligible_skipped(self, sample_alert):
        channel = MailChannel(host="smtp.example.com")
        no_mail = Subscriber(subscriber_id="s", email=None, email_enabled=True)

        with patch("market_monitor.notifications.channels.aiosmtplib.send", new=AsyncMock()) as send:
            result = await channel.send_bulk([no_mail], sample_alert)

        assert result.skipped == 1
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_counted_not_raised(self, sample_alert, premium_subscriber, free_subscriber):
        channel = MailChannel(host="smtp.example.com")
        send = AsyncMock(side_effect=[aiosmtplib.SMTPRecipientsRefused([]), None])

        with patch("market_monitor.notifications.channels.aiosmtplib.send", new=send):
            result = await channel.send_bulk([premium_subscriber, free_subscriber], sample_alert)

        assert result.sent == 1
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_disconnect_is_retried(self, sample_alert, free_subscriber):
        channel = MailChannel(host="smtp.example.com", retry=FAST_RETRY)
        send = AsyncMock(side_effect=[aiosmtplib.SMTPServerDisconnected("bye"), None])

        with patch("market_monitor.notifications.channels.aiosmtplib.send", new=send):
            result = await channel.send_bulk([free_subscriber], sample_alert)

        assert result.sent == 1
        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_not_retried(self, sample_alert, free_subscriber):
        channel = MailChannel(host="smtp.example.com", retry=FAST_RETRY)
        send = AsyncMock(side_effect=aiosmtplib.SMTPTimeoutError("slow"))

        with patch("market_monitor.notifications.channels.aiosmtplib.send", new=send):
            result = await channel.send_bulk([free_subscriber], sample_alert)

        assert result.failed == 1
        assert send.await_count == 1


# ── PushChannel ─────────────────────────────────────────


class TestPushChannel:
    """Push gateway delivery."""

    @pytest.fixture
    def two_endpoint_subscriber(self):
        return Subscriber(
            subscriber_id="sub-push",
            push_enabled=True,
            push_endpoints=[
                PushEndpoint(endpoint="https://push.example/a", p256dh="k", auth="x"),
                PushEndpoint(endpoint="https://push.example/b", p256dh="k", auth="y"),
            ],
        )

    @pytest.mark.asyncio
    async def test_posts_each_endpoint(self, sample_alert, two_endpoint_subscriber):
        channel = PushChannel(gateway_url="https://gateway.example/send", token="secret")

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = _mock_response(201)
            _patch_client(mock_client_cls, mock_client)

            result = await channel.send_bulk([two_endpoint_subscriber], sample_alert)

        assert result.sent == 2
        body = mock_client.post.call_args.kwargs["json"]
        assert body["subscription"]["endpoint"] == "https://push.example/b"
        assert body["subscription"]["keys"] == {"p256dh": "k", "auth": "y"}
        assert body["payload"]["data"]["alertId"] == "alert-001"
        assert body["payload"]["requireInteraction"] is True
        assert mock_client.post.call_args.kwargs["headers"] == {"Authorization": "Bearer secret"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 410])
    async def test_gone_endpoint_is_expired(self, sample_alert, two_endpoint_subscriber, status):
        channel = PushChannel(gateway_url="https://gateway.example/send", retry=FAST_RETRY)

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.side_effect = [_mock_response(status), _mock_response(200)]
            _patch_client(mock_client_cls, mock_client)

            result = await channel.send_bulk([two_endpoint_subscriber], sample_alert)

        assert result.expired == 1
        assert result.sent == 1
        assert result.failed == 0
        assert result.expired_endpoints == [("sub-push", "https://push.example/a")]
        assert mock_client.post.await_count == 2

    @pytest.mark.asyncio
    async def test_server_error_retried_then_failed(self, sample_alert, premium_subscriber):
        channel = PushChannel(gateway_url="https://gateway.example/send", retry=FAST_RETRY)

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = _mock_response(503)
            _patch_client(mock_client_cls, mock_client)

            result = await channel.send_bulk([premium_subscriber], sample_alert)

        assert result.failed == 1
        assert mock_client.post.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed(self, sample_alert, premium_subscriber):
        channel = PushChannel(gateway_url="https://gateway.example/send", retry=FAST_RETRY)

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.side_effect = httpx.ReadTimeout("timed out")
            _patch_client(mock_client_cls, mock_client)

            result = await channel.send_bulk([premium_subscriber], sample_alert)

        assert result.failed == 1
        assert mock_client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_no_endpoints_skipped(self, sample_alert, free_subscriber):
        channel = PushChannel(gateway_url="https://gateway.example/send")

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            _patch_client(mock_client_cls, mock_client)

            result = await channel.send_bulk([free_subscriber], sample_alert)

        assert result.skipped == 1
        mock_client.post.assert_not_awaited()


# ── ChatChannel ─────────────────────────────────────────


class TestChatChannel:
    """Telegram delivery."""

    @pytest.mark.asyncio
    async def test_send_one(self, sample_alert):
        channel = ChatChannel(bot_token="123:abc")

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = _mock_response(200)
            _patch_client(mock_client_cls, mock_client)

            assert await channel.send_one("1001", sample_alert) is True

        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert body["chat_id"] == "1001"
        assert body["parse_mode"] == "HTML"
        assert "<b>" in body["text"]

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self):
        channel = ChatChannel(bot_token="t", retry=FAST_RETRY)

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = _mock_response(400)
            _patch_client(mock_client_cls, mock_client)

            assert await channel.send_text("1001", "hi") is False

        assert mock_client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_bulk_skips_unverified(self, sample_alert, premium_subscriber):
        channel = ChatChannel(bot_token="t")
        unverified = Subscriber(
            subscriber_id="u", chat_enabled=True, chat_verified=False, chat_handle="2002",
        )

        with patch("market_monitor.notifications.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.side_effect = httpx.ConnectError("refused")
            _patch_client(mock_client_cls, mock_client)

            result = await channel.send_bulk([premium_subscriber, unverified], sample_alert)

        assert result.skipped == 1
        assert result.failed == 1
        assert result.sent == 0


# ── CircuitBreaker ──────────────────────────────────────


class _StubChannel(NotificationChannel):
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.calls = 0

    @property
    def name(self) -> str:
        return "stub"

    async def send_bulk(self, recipients, alert):
        self.calls += 1
        outcome = self._outcomes.pop(0) if self._outcomes else DeliveryResult("stub", sent=1)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _failed() -> DeliveryResult:
    return DeliveryResult(channel="stub", failed=2)


class TestCircuitBreaker:
    """Breaker state transitions."""

    @pytest.mark.asyncio
    async def test_passthrough(self, sample_alert, free_subscriber):
        breaker = CircuitBreaker(_StubChannel([]))
        result = await breaker.send_bulk([free_subscriber], sample_alert)
        assert result.sent == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, sample_alert, free_subscriber):
        stub = _StubChannel([_failed(), RuntimeError("down"), _failed()])
        breaker = CircuitBreaker(stub, failure_threshold=3, recovery_timeout=60.0)

        await breaker.send_bulk([free_subscriber], sample_alert)
        with pytest.raises(RuntimeError):
            await breaker.send_bulk([free_subscriber], sample_alert)
        await breaker.send_bulk([free_subscriber], sample_alert)

        assert breaker.state == CircuitState.OPEN

        result = await breaker.send_bulk([free_subscriber, free_subscriber], sample_alert)
        assert result.skipped == 2
        assert stub.calls == 3

    @pytest.mark.asyncio
    async def test_partial_success_resets(self, sample_alert, free_subscriber):
        stub = _StubChannel([_failed(), DeliveryResult("stub", sent=1, failed=1), _failed()])
        breaker = CircuitBreaker(stub, failure_threshold=2)

        for _ in range(3):
            await breaker.send_bulk([free_subscriber], sample_alert)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_expired_only_is_not_failure(self, sample_alert, free_subscriber):
        stub = _StubChannel([DeliveryResult("stub", expired=1)])
        breaker = CircuitBreaker(stub, failure_threshold=1)
        await breaker.send_bulk([free_subscriber], sample_alert)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_recovery_probe_success(self, sample_alert, free_subscriber):
        stub = _StubChannel([_failed()])
        breaker = CircuitBreaker(stub, failure_threshold=1, recovery_timeout=0.0)

        await breaker.send_bulk([free_subscriber], sample_alert)
        assert breaker.state == CircuitState.OPEN

        result = await breaker.send_bulk([free_subscriber], sample_alert)
        assert result.sent == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_recovery_probe_failure(self, sample_alert, free_subscriber):
        stub = _StubChannel([_failed(), _failed()])
        breaker = CircuitBreaker(stub, failure_threshold=1, recovery_timeout=0.0)

        await breaker.send_bulk([free_subscriber], sample_alert)
        await breaker.send_bulk([free_subscriber], sample_alert)

        assert breaker.state == CircuitState.OPEN
        assert stub.calls == 2

    def test_exposes_wrapped_name(self):
        stub = _StubChannel([])
        breaker = CircuitBreaker(stub)
        assert breaker.name == "stub"
        assert breaker.wrapped is stub
