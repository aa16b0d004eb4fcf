"""Schema definitions for alerts and metric snapshots.

``Alert`` maps 1:1 to the ``alerts`` table. Alerts come from two places:
threshold rules evaluated against a ``MetricSnapshot`` and the release
scheduler's countdown/post-event triggers. Both share one dedup identity,
see ``Alert.dedup_key``.
"""

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Literal

AlertType = Literal[
    "SSR_VERY_BULLISH",
    "SSR_BULLISH",
    "SSR_BEARISH",
    "SSR_VERY_BEARISH",
    "BTC_DOMINANCE_HIGH",
    "BTC_DOMINANCE_LOW",
    "BTC_EXTREME_INFLOW",
    "BTC_EXTREME_OUTFLOW",
    "ETH_EXTREME_INFLOW",
    "ETH_EXTREME_OUTFLOW",
    "STABLECOIN_RAPID_GROWTH",
    "STABLECOIN_RAPID_DECLINE",
    "RELEASE_WARNING",
    "RELEASE_COUNTDOWN",
    "RELEASE_DATA",
]

VALID_ALERT_TYPES: frozenset[str] = frozenset({
    "SSR_VERY_BULLISH",
    "SSR_BULLISH",
    "SSR_BEARISH",
    "SSR_VERY_BEARISH",
    "BTC_DOMINANCE_HIGH",
    "BTC_DOMINANCE_LOW",
    "BTC_EXTREME_INFLOW",
    "BTC_EXTREME_OUTFLOW",
    "ETH_EXTREME_INFLOW",
    "ETH_EXTREME_OUTFLOW",
    "STABLECOIN_RAPID_GROWTH",
    "STABLECOIN_RAPID_DECLINE",
    "RELEASE_WARNING",
    "RELEASE_COUNTDOWN",
    "RELEASE_DATA",
})

RELEASE_ALERT_TYPES: frozenset[str] = frozenset({
    "RELEASE_WARNING",
    "RELEASE_COUNTDOWN",
    "RELEASE_DATA",
})

AlertSeverity = Literal["low", "medium", "high"]

VALID_SEVERITIES: frozenset[str] = frozenset({"low", "medium", "high"})


def dedup_bucket(value: float | None, decimals: int = 2) -> str:
    """Round a metric value into the bucket used by the dedup key."""
    if value is None:
        return "none"
    return f"{round(value, decimals):.{decimals}f}"


def freeze_details(value: Any) -> Any:
    """Deep read-only copy: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_details(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_details(v) for v in value)
    return value


def thaw_details(value: Any) -> Any:
    """Inverse of ``freeze_details``, producing plain JSON-serializable types."""
    if isinstance(value, Mapping):
        return {k: thaw_details(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw_details(v) for v in value]
    return value


@dataclass(frozen=True)
class Alert:
    """An immutable alert.

    Attributes:
        alert_type: What condition was detected.
        message: Human-readable description.
        severity: Urgency level (low, medium, high).
        metric: Metric (or ``release:<id>``) the alert is about.
        value: Observed value, None when the alert has no scalar value.
        alert_id: UUID4 identifier.
        created_at: When the alert was generated (UTC).
        details: Structured payload, e.g. a prediction section. Stored as a
            read-only copy of what was passed in.
        acknowledged: Whether an operator has reviewed the alert.
    """

    alert_type: str
    message: str
    severity: str
    metric: str
    value: float | None = None
    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    details: Mapping[str, Any] = field(default_factory=dict)
    acknowledged: bool = False

    def __post_init__(self) -> None:
        if self.alert_type not in VALID_ALERT_TYPES:
            raise ValueError(
                f"Invalid alert_type {self.alert_type!r}. "
                f"Must be one of: {sorted(VALID_ALERT_TYPES)}"
            )
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )
        object.__setattr__(self, "details", freeze_details(self.details))

    @property
    def origin(self) -> str:
        """``release`` for scheduler alerts, ``threshold`` otherwise."""
        return "release" if self.alert_type in RELEASE_ALERT_TYPES else "threshold"

    def dedup_key(self, decimals: int = 2) -> str:
        """Identity used to detect repeats inside a dedup window."""
        return f"{self.alert_type}:{self.metric}:{dedup_bucket(self.value, decimals)}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "alert_id": self.alert_id,
            "alert_type": self.alert_type,
            "message": self.message,
            "severity": self.severity,
            "metric": self.metric,
            "value": self.value,
            "created_at": self.created_at.isoformat(),
            "details": thaw_details(self.details),
            "acknowledged": self.acknowledged,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        """Create an Alert from a dictionary produced by ``to_dict``."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        elif created_at is None:
            created_at = datetime.now(timezone.utc)

        value = data.get("value")
        return cls(
            alert_id=data.get("alert_id", str(uuid.uuid4())),
            alert_type=data["alert_type"],
            message=data["message"],
            severity=data["severity"],
            metric=data["metric"],
            value=float(value) if value is not None else None,
            created_at=created_at,
            details=data.get("details") or {},
            acknowledged=data.get("acknowledged", False),
        )


def _to_float(value: Any) -> float | None:
    """Coerce numbers and numeric strings; anything else becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _dig(data: dict[str, Any], *path: str) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


@dataclass(frozen=True)
class MetricSnapshot:
    """Latest values of the tracked indicators.

    Every field is optional; a missing value means the rule reading it
    does not apply to this snapshot.
    """

    ssr: float | None = None
    btc_dominance: float | None = None
    btc_net_flow: float | None = None
    eth_net_flow: float | None = None
    stablecoin_change_24h: float | None = None
    collected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricSnapshot":
        """Build a snapshot from flat keys or the collector's nested payload.

        Flat keys (``ssr``, ``btc_dominance``, ...) win over the nested
        ``stablecoinMetrics`` / ``bitcoinDominance`` / ``exchangeFlows`` shape.
        """
        def pick(flat: str, *nested: str) -> float | None:
            if data.get(flat) is not None:
                return _to_float(data[flat])
            return _to_float(_dig(data, *nested))

        collected_at = data.get("collected_at")
        if isinstance(collected_at, str):
            collected_at = datetime.fromisoformat(collected_at)
        if collected_at is None:
            collected_at = datetime.now(timezone.utc)

        return cls(
            ssr=pick("ssr", "stablecoinMetrics", "ssr"),
            btc_dominance=pick("btc_dominance", "bitcoinDominance", "value"),
            btc_net_flow=pick("btc_net_flow", "exchangeFlows", "btc", "netFlow"),
            eth_net_flow=pick("eth_net_flow", "exchangeFlows", "eth", "netFlow"),
            stablecoin_change_24h=pick(
                "stablecoin_change_24h", "stablecoinMetrics", "change_24h",
            ),
            collected_at=collected_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "ssr": self.ssr,
            "btc_dominance": self.btc_dominance,
            "btc_net_flow": self.btc_net_flow,
            "eth_net_flow": self.eth_net_flow,
            "stablecoin_change_24h": self.stablecoin_change_24h,
            "collected_at": self.collected_at.isoformat(),
        }
