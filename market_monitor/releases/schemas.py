"""Schema definitions for scheduled economic data releases."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

ReleaseKind = Literal["CPI", "PCE", "PPI", "FOMC", "NFP", "CUSTOM"]

VALID_RELEASE_KINDS: frozenset[str] = frozenset(
    {"CPI", "PCE", "PPI", "FOMC", "NFP", "CUSTOM"}
)

ReleaseImpact = Literal["low", "medium", "high"]

VALID_IMPACTS: frozenset[str] = frozenset({"low", "medium", "high"})


class NotificationFlag(enum.Enum):
    """A one-shot notification milestone of a release.

    Values are the persisted representation.
    """
    WARNING_24H = "24h_warning"
    MIN_60 = "60min"
    MIN_30 = "30min"
    MIN_15 = "15min"
    MIN_5 = "5min"
    DATA_COLLECTED = "data_collected"

    @classmethod
    def for_minutes(cls, minutes: int) -> "NotificationFlag":
        """Countdown flag for ``minutes`` before the release."""
        return cls(f"{minutes}min")

    @property
    def countdown_minutes(self) -> int | None:
        """Minutes before the release for countdown flags, else None."""
        if self.value.endswith("min"):
            return int(self.value[:-3])
        return None


@dataclass
class ScheduledRelease:
    """A calendar entry for one macroeconomic data release.

    ``scheduled_at`` is timezone-aware; ``timezone`` names the zone the
    release is published in (for display).
    """

    id: str
    kind: str
    title: str
    scheduled_at: datetime
    timezone: str = "America/New_York"
    impact: str = "high"
    source: str = ""
    description: str = ""
    url: str = ""
    notifications_sent: set[NotificationFlag] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.kind not in VALID_RELEASE_KINDS:
            raise ValueError(
                f"Invalid release kind {self.kind!r}. "
                f"Must be one of: {sorted(VALID_RELEASE_KINDS)}"
            )
        if self.impact not in VALID_IMPACTS:
            raise ValueError(
                f"Invalid impact {self.impact!r}. "
                f"Must be one of: {sorted(VALID_IMPACTS)}"
            )
        if self.scheduled_at.tzinfo is None:
            raise ValueError("scheduled_at must be timezone-aware")

    def has_fired(self, flag: NotificationFlag) -> bool:
        return flag in self.notifications_sent

    def is_upcoming(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.scheduled_at > now

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "scheduled_at": self.scheduled_at.isoformat(),
            "timezone": self.timezone,
            "impact": self.impact,
            "source": self.source,
            "description": self.description,
            "url": self.url,
            "notifications_sent": sorted(f.value for f in self.notifications_sent),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledRelease":
        scheduled_at = data["scheduled_at"]
        if isinstance(scheduled_at, str):
            scheduled_at = datetime.fromisoformat(scheduled_at)
        return cls(
            id=data["id"],
            kind=data["kind"],
            title=data["title"],
            scheduled_at=scheduled_at,
            timezone=data.get("timezone", "America/New_York"),
            impact=data.get("impact", "high"),
            source=data.get("source", ""),
            description=data.get("description", ""),
            url=data.get("url", ""),
            notifications_sent={
                NotificationFlag(v) for v in data.get("notifications_sent") or []
            },
        )


@dataclass
class ReleaseStats:
    """Summary of the calendar at a point in time."""

    total: int
    upcoming: int
    past: int
    high_impact_upcoming: int
    next_release: ScheduledRelease | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "upcoming": self.upcoming,
            "past": self.past,
            "high_impact_upcoming": self.high_impact_upcoming,
            "next_release": self.next_release.to_dict() if self.next_release else None,
        }
