"""Observability layer - logging and metrics."""

from market_monitor.observability.logging import setup_logging
from market_monitor.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
