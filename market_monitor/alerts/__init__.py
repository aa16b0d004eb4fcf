"""Threshold detection, deduplication and the alert log.

Components:
- Alert / MetricSnapshot: Immutable dataclasses (alert maps to the alerts table)
- AlertConfig: Pydantic settings for rule thresholds and dedup windows
- detect_alerts: Pure rule-table evaluation of a snapshot
- AlertRepository: Alert log with atomic insert-if-absent
- Deduplicator: Fail-open dedup gate over the alert log
- AlertService: Orchestrator for detection, dedup and routing
"""

from market_monitor.alerts.config import AlertConfig
from market_monitor.alerts.dedup import Deduplicator
from market_monitor.alerts.repository import AlertRepository
from market_monitor.alerts.schemas import (
    VALID_ALERT_TYPES,
    VALID_SEVERITIES,
    Alert,
    AlertSeverity,
    AlertType,
    MetricSnapshot,
)
from market_monitor.alerts.service import AlertService
from market_monitor.alerts.triggers import detect_alerts

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertRepository",
    "AlertService",
    "AlertSeverity",
    "AlertType",
    "Deduplicator",
    "MetricSnapshot",
    "VALID_ALERT_TYPES",
    "VALID_SEVERITIES",
    "detect_alerts",
]
