"""Schema definitions for notification routing and delivery.

Subscribers are owned by the account system and read-only here.
NotificationJob and DeliveryResult are ephemeral and never persisted
(except a NotificationJob parked in the Redis-backed deferred queue).
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from market_monitor.alerts.schemas import Alert

PlanTier = Literal["free", "premium"]

VALID_PLAN_TIERS: frozenset[str] = frozenset({"free", "premium"})

ChannelName = Literal["mail", "push", "chat"]

CHANNEL_NAMES: tuple[str, ...] = ("mail", "push", "chat")


@dataclass(frozen=True)
class PushEndpoint:
    """An opaque web-push subscription (endpoint URL plus client keys)."""

    endpoint: str
    p256dh: str
    auth: str

    def to_dict(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PushEndpoint":
        keys = data.get("keys") or {}
        return cls(
            endpoint=data["endpoint"],
            p256dh=keys.get("p256dh", data.get("p256dh", "")),
            auth=keys.get("auth", data.get("auth", "")),
        )


@dataclass
class Subscriber:
    """A notification recipient and its channel preferences."""

    subscriber_id: str
    email: str | None = None
    email_enabled: bool = False
    push_enabled: bool = False
    chat_enabled: bool = False
    chat_verified: bool = False
    chat_handle: str | None = None
    push_endpoints: list[PushEndpoint] = field(default_factory=list)
    plan_tier: str = "free"

    def __post_init__(self) -> None:
        if self.plan_tier not in VALID_PLAN_TIERS:
            raise ValueError(
                f"Invalid plan_tier {self.plan_tier!r}. "
                f"Must be one of: {sorted(VALID_PLAN_TIERS)}"
            )

    @property
    def is_premium(self) -> bool:
        return self.plan_tier == "premium"

    @property
    def mail_eligible(self) -> bool:
        return self.email_enabled and bool(self.email)

    @property
    def push_eligible(self) -> bool:
        return self.push_enabled and len(self.push_endpoints) > 0

    @property
    def chat_eligible(self) -> bool:
        return self.chat_enabled and self.chat_verified and bool(self.chat_handle)

    def eligible_channels(self) -> list[str]:
        """Channels this subscriber can receive on, in CHANNEL_NAMES order."""
        flags = {
            "mail": self.mail_eligible,
            "push": self.push_eligible,
            "chat": self.chat_eligible,
        }
        return [name for name in CHANNEL_NAMES if flags[name]]

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "subscriber_id": self.subscriber_id,
            "email": self.email,
            "email_enabled": self.email_enabled,
            "push_enabled": self.push_enabled,
            "chat_enabled": self.chat_enabled,
            "chat_verified": self.chat_verified,
            "chat_handle": self.chat_handle,
            "push_endpoints": [e.to_dict() for e in self.push_endpoints],
            "plan_tier": self.plan_tier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subscriber":
        return cls(
            subscriber_id=data["subscriber_id"],
            email=data.get("email"),
            email_enabled=data.get("email_enabled", False),
            push_enabled=data.get("push_enabled", False),
            chat_enabled=data.get("chat_enabled", False),
            chat_verified=data.get("chat_verified", False),
            chat_handle=data.get("chat_handle"),
            push_endpoints=[
                PushEndpoint.from_dict(e) for e in data.get("push_endpoints") or []
            ],
            plan_tier=data.get("plan_tier", "free"),
        )


@dataclass(frozen=True)
class NotificationJob:
    """One (alert, subscriber, channel) delivery, consumed by one dispatch."""

    alert: Alert
    subscriber: Subscriber
    channel: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "subscriber": self.subscriber.to_dict(),
            "channel": self.channel,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationJob":
        return cls(
            alert=Alert.from_dict(data["alert"]),
            subscriber=Subscriber.from_dict(data["subscriber"]),
            channel=data["channel"],
        )


@dataclass
class DeliveryResult:
    """Outcome of one channel's bulk send.

    ``expired`` counts terminal failures (endpoint gone) separately from
    transient ``failed`` ones; ``expired_endpoints`` lists them as
    ``(subscriber_id, endpoint)`` so the owner can deactivate them.
    """

    channel: str
    sent: int = 0
    failed: int = 0
    expired: int = 0
    skipped: int = 0
    expired_endpoints: list[tuple[str, str]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed + self.expired

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.expired == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sent": self.sent,
            "failed": self.failed,
            "expired": self.expired,
            "skipped": self.skipped,
        }
