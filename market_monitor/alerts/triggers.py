"""Stateless threshold rules for alert detection.

Each metric has a small rule table of exclusive bands, most extreme band
first. ``check_*`` functions evaluate one table against one snapshot value
and return the Alerts that fired. No I/O, no state; dedup and persistence
live in AlertService.

A missing metric is "not applicable": its rule returns nothing and is not
treated as an error.
"""

import operator
from collections.abc import Callable
from dataclasses import dataclass

from market_monitor.alerts.config import AlertConfig
from market_monitor.alerts.schemas import Alert, MetricSnapshot


@dataclass(frozen=True)
class BandRule:
    """One row of a rule table: fire ``alert_type`` when ``value <op> bound``."""

    alert_type: str
    severity: str
    compare: Callable[[float, float], bool]
    bound: float
    template: str


def ssr_rules(config: AlertConfig) -> tuple[BandRule, ...]:
    return (
        BandRule(
            "SSR_VERY_BULLISH", "high", operator.lt, config.ssr_very_bullish,
            "SSR at {value:.2f} - Very bullish signal! High buying power available.",
        ),
        BandRule(
            "SSR_BULLISH", "medium", operator.lt, config.ssr_bullish,
            "SSR at {value:.2f} - Bullish signal. Good buying power available.",
        ),
        BandRule(
            "SSR_VERY_BEARISH", "high", operator.gt, config.ssr_very_bearish,
            "SSR at {value:.2f} - Very bearish signal! Very low buying power.",
        ),
        BandRule(
            "SSR_BEARISH", "medium", operator.gt, config.ssr_bearish,
            "SSR at {value:.2f} - Bearish signal. Low buying power.",
        ),
    )


def dominance_rules(config: AlertConfig) -> tuple[BandRule, ...]:
    return (
        BandRule(
            "BTC_DOMINANCE_HIGH", "medium", operator.gt, config.btc_dominance_high,
            "Bitcoin dominance at {value:.2f}% - BTC outperforming altcoins significantly.",
        ),
        BandRule(
            "BTC_DOMINANCE_LOW", "medium", operator.lt, config.btc_dominance_low,
            "Bitcoin dominance at {value:.2f}% - Altcoins outperforming BTC.",
        ),
    )


def flow_rules(asset: str, config: AlertConfig) -> tuple[BandRule, ...]:
    """Inflow/outflow bands for one asset's signed exchange net flow."""
    threshold = config.exchange_flow_threshold
    return (
        BandRule(
            f"{asset}_EXTREME_INFLOW", "high", operator.gt, threshold,
            asset + " extreme inflow: ${millions:.2f}M - Money moving to exchanges (bearish).",
        ),
        BandRule(
            f"{asset}_EXTREME_OUTFLOW", "high", operator.lt, -threshold,
            asset + " extreme outflow: ${millions:.2f}M - Money leaving exchanges (bullish).",
        ),
    )


def stablecoin_rules(config: AlertConfig) -> tuple[BandRule, ...]:
    threshold = config.stablecoin_change_threshold
    return (
        BandRule(
            "STABLECOIN_RAPID_GROWTH", "medium", operator.gt, threshold,
            "Stablecoin market cap growing rapidly: +{value:.2f}% - Sidelined capital accumulating.",
        ),
        BandRule(
            "STABLECOIN_RAPID_DECLINE", "high", operator.lt, -threshold,
            "Stablecoin market cap declining rapidly: {value:.2f}% - Capital leaving crypto.",
        ),
    )


def _first_match(
    value: float | None,
    metric: str,
    rules: tuple[BandRule, ...],
) -> Alert | None:
    """Return the alert for the first band ``value`` falls into, if any."""
    if value is None:
        return None

    for rule in rules:
        if rule.compare(value, rule.bound):
            return Alert(
                alert_type=rule.alert_type,
                severity=rule.severity,
                metric=metric,
                value=value,
                message=rule.template.format(
                    value=value, millions=abs(value) / 1e6,
                ),
                details={"bound": rule.bound},
            )
    return None


def check_ssr(snapshot: MetricSnapshot, config: AlertConfig) -> list[Alert]:
    """Stablecoin supply ratio: low is bullish, high is bearish."""
    alert = _first_match(snapshot.ssr, "ssr", ssr_rules(config))
    return [alert] if alert is not None else []


def check_btc_dominance(snapshot: MetricSnapshot, config: AlertConfig) -> list[Alert]:
    """Bitcoin dominance outside the normal band, medium in either direction."""
    alert = _first_match(snapshot.btc_dominance, "btc_dominance", dominance_rules(config))
    return [alert] if alert is not None else []


def check_exchange_flows(snapshot: MetricSnapshot, config: AlertConfig) -> list[Alert]:
    """Extreme exchange net flows, BTC then ETH; the sign picks the direction."""
    alerts: list[Alert] = []
    for asset, value in (("BTC", snapshot.btc_net_flow), ("ETH", snapshot.eth_net_flow)):
        alert = _first_match(value, "exchange_flows", flow_rules(asset, config))
        if alert is not None:
            alerts.append(alert)
    return alerts


def check_stablecoin_growth(snapshot: MetricSnapshot, config: AlertConfig) -> list[Alert]:
    """Rapid stablecoin market cap growth (medium) or decline (high)."""
    alert = _first_match(
        snapshot.stablecoin_change_24h, "stablecoin_growth", stablecoin_rules(config),
    )
    return [alert] if alert is not None else []


def detect_alerts(snapshot: MetricSnapshot, config: AlertConfig) -> list[Alert]:
    """Run every rule table against a snapshot.

    Rules are independent and may each fire; results keep insertion order
    (ssr, dominance, flows, stablecoin growth). There is no priority.

    Args:
        snapshot: Latest metric values.
        config: Alert configuration with thresholds.

    Returns:
        List of candidate alerts (may be empty).
    """
    alerts: list[Alert] = []
    alerts.extend(check_ssr(snapshot, config))
    alerts.extend(check_btc_dominance(snapshot, config))
    alerts.extend(check_exchange_flows(snapshot, config))
    alerts.extend(check_stablecoin_growth(snapshot, config))
    return alerts
