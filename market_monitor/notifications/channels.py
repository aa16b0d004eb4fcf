"""Channel dispatchers for alert delivery.

Provides an ABC for notification channels plus concrete implementations
for mail (SMTP), browser push (via a push gateway) and chat (Telegram bot).
Each channel takes a batch of recipients for one alert and returns a
DeliveryResult; per-recipient failures are caught and counted, never raised.

A CircuitBreaker decorator wraps any channel to stop hammering a provider
that is down.

Pattern: Decorator (CircuitBreaker wraps any NotificationChannel).
"""

import enum
import logging
import time
from abc import ABC, abstractmethod
from email.message import EmailMessage

import aiosmtplib
import httpx

from market_monitor.alerts.schemas import Alert
from market_monitor.notifications.retry import NO_RETRY, RetryPolicy, TransientError
from market_monitor.notifications.schemas import DeliveryResult, PushEndpoint, Subscriber
from market_monitor.notifications.templates import render_chat, render_email, render_push
from market_monitor.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# Push services answer 404/410 for subscriptions the browser has dropped.
EXPIRED_STATUS_CODES = frozenset({404, 410})


class ChannelError(Exception):
    """A send failed and should not be retried."""


class ChannelTimeoutError(ChannelError):
    """A send exceeded its timeout."""


class EndpointExpiredError(ChannelError):
    """The push endpoint is gone for good and should be deactivated."""

    def __init__(self, endpoint: str, status_code: int) -> None:
        super().__init__(f"Push endpoint expired ({status_code}): {endpoint}")
        self.endpoint = endpoint
        self.status_code = status_code


def _raise_for_status(resp: httpx.Response, target: str) -> None:
    """Map a provider response onto the channel error hierarchy."""
    if resp.is_success:
        return
    if resp.status_code == 429 or resp.status_code >= 500:
        raise TransientError(f"{target} returned {resp.status_code}")
    raise ChannelError(f"{target} returned {resp.status_code}")


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel ('mail', 'push', 'chat')."""

    @abstractmethod
    async def send_bulk(
        self,
        recipients: list[Subscriber],
        alert: Alert,
    ) -> DeliveryResult:
        """Deliver one alert to a batch of recipients.

        Args:
            recipients: Subscribers to deliver to.
            alert: Alert to deliver.

        Returns:
            Counts of sent, failed, expired and skipped deliveries.
        """


class MailChannel(NotificationChannel):
    """Sends one plain-text email per recipient through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "alerts@market-monitor.local",
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        retry: RetryPolicy = NO_RETRY,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout
        self._retry = retry

    @property
    def name(self) -> str:
        return "mail"

    def _build_message(self, to: str, alert: Alert) -> EmailMessage:
        subject, body = render_email(alert)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = to
        msg.set_content(body)
        return msg

    async def _send_message(self, msg: EmailMessage) -> None:
        try:
            await aiosmtplib.send(
                msg,
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                start_tls=self._use_tls,
                timeout=self._timeout,
            )
        except aiosmtplib.SMTPTimeoutError as e:
            raise ChannelTimeoutError(str(e)) from e
        except (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPServerDisconnected) as e:
            raise TransientError(str(e)) from e

    async def send_bulk(
        self,
        recipients: list[Subscriber],
        alert: Alert,
    ) -> DeliveryResult:
        result = DeliveryResult(channel=self.name)
        for subscriber in recipients:
            if not subscriber.mail_eligible:
                result.skipped += 1
                continue
            msg = self._build_message(subscriber.email, alert)
            try:
                await self._retry.call(self._send_message, msg)
                result.sent += 1
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "Mail to subscriber %s failed for alert %s: %s",
                    subscriber.subscriber_id, alert.alert_id, e,
                )
        return result


class PushChannel(NotificationChannel):
    """Delivers browser push notifications through a push gateway.

    The gateway handles VAPID signing and payload encryption; we POST
    ``{"subscription": ..., "payload": ...}`` once per endpoint. Creates a
    new ``httpx.AsyncClient`` per batch (short-lived, no pooling).
    """

    def __init__(
        self,
        gateway_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        retry: RetryPolicy = NO_RETRY,
    ) -> None:
        self._gateway_url = gateway_url
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._timeout = timeout
        self._retry = retry

    @property
    def name(self) -> str:
        return "push"

    async def _post(
        self,
        client: httpx.AsyncClient,
        endpoint: PushEndpoint,
        payload: dict,
    ) -> None:
        try:
            resp = await client.post(
                self._gateway_url,
                json={"subscription": endpoint.to_dict(), "payload": payload},
                headers=self._headers,
            )
        except httpx.TimeoutException as e:
            raise ChannelTimeoutError(f"Push gateway timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Push gateway unreachable: {e}") from e

        if resp.status_code in EXPIRED_STATUS_CODES:
            raise EndpointExpiredError(endpoint.endpoint, resp.status_code)
        _raise_for_status(resp, "Push gateway")

    async def send_bulk(
        self,
        recipients: list[Subscriber],
        alert: Alert,
    ) -> DeliveryResult:
        result = DeliveryResult(channel=self.name)
        payload = render_push(alert)

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for subscriber in recipients:
                if not subscriber.push_eligible:
                    result.skipped += 1
                    continue
                for endpoint in subscriber.push_endpoints:
                    try:
                        await self._retry.call(self._post, client, endpoint, payload)
                        result.sent += 1
                    except EndpointExpiredError as e:
                        result.expired += 1
                        result.expired_endpoints.append(
                            (subscriber.subscriber_id, endpoint.endpoint)
                        )
                        logger.info(
                            "Push endpoint expired for subscriber %s (%d)",
                            subscriber.subscriber_id, e.status_code,
                        )
                    except Exception as e:
                        result.failed += 1
                        logger.warning(
                            "Push to subscriber %s failed for alert %s: %s",
                            subscriber.subscriber_id, alert.alert_id, e,
                        )
        return result


class ChatChannel(NotificationChannel):
    """Delivers alerts as Telegram bot messages (HTML parse mode)."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        retry: RetryPolicy = NO_RETRY,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self._timeout = timeout
        self._retry = retry

    @property
    def name(self) -> str:
        return "chat"

    async def _post_message(self, handle: str, text: str) -> None:
        body = {
            "chat_id": handle,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body)
        except httpx.TimeoutException as e:
            raise ChannelTimeoutError(f"Telegram timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Telegram unreachable: {e}") from e
        _raise_for_status(resp, "Telegram")

    async def send_text(self, handle: str, text: str) -> bool:
        """Send a raw HTML message (used for command replies)."""
        try:
            await self._retry.call(self._post_message, handle, text)
            return True
        except Exception as e:
            logger.warning("Telegram message to %s failed: %s", handle, e)
            return False

    async def send_one(self, handle: str, alert: Alert) -> bool:
        """Send an alert to a single chat handle.

        Returns:
            True if Telegram accepted the message.
        """
        return await self.send_text(handle, render_chat(alert))

    async def send_bulk(
        self,
        recipients: list[Subscriber],
        alert: Alert,
    ) -> DeliveryResult:
        result = DeliveryResult(channel=self.name)
        for subscriber in recipients:
            if not subscriber.chat_eligible:
                result.skipped += 1
                continue
            if await self.send_one(subscriber.chat_handle, alert):
                result.sent += 1
            else:
                result.failed += 1
        return result


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(NotificationChannel):
    """Wraps a NotificationChannel with circuit breaker protection.

    A batch counts as a failure when the channel raised, or when every
    attempted recipient failed. Expired push endpoints are the subscriber's
    problem, not the provider's, and do not count.

    - CLOSED: Batches pass through; consecutive failed batches tracked.
    - OPEN: Batches are reported as skipped without calling the provider.
      After recovery_timeout, moves to HALF_OPEN.
    - HALF_OPEN: One probe batch. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._channel = channel
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def wrapped(self) -> NotificationChannel:
        return self._channel

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        get_metrics().circuit_state.labels(channel=self.name).set(
            1 if state == CircuitState.OPEN else 0
        )

    async def send_bulk(
        self,
        recipients: list[Subscriber],
        alert: Alert,
    ) -> DeliveryResult:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._set_state(CircuitState.HALF_OPEN)
                logger.info(
                    "Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)",
                    self.name,
                )
            else:
                logger.debug(
                    "Circuit breaker %s: OPEN, skipping %d recipients for alert %s",
                    self.name, len(recipients), alert.alert_id,
                )
                return DeliveryResult(channel=self.name, skipped=len(recipients))

        try:
            result = await self._channel.send_bulk(recipients, alert)
        except Exception:
            self._on_failure()
            raise

        if result.failed > 0 and result.sent == 0:
            self._on_failure()
        else:
            self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info(
                "Circuit breaker %s: HALF_OPEN → CLOSED (probe succeeded)",
                self.name,
            )
        self._set_state(CircuitState.CLOSED)
        self._consecutive_failures = 0

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN)
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (probe failed)",
                self.name,
            )
        elif self._consecutive_failures >= self._failure_threshold:
            self._set_state(CircuitState.OPEN)
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failed batches",
                self.name, self._consecutive_failures,
            )
