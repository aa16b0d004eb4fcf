"""
Prometheus metrics for monitoring the alert pipeline.

Defines and exposes metrics for:
- Alert detection and deduplication outcomes
- Release scheduler trigger firing
- Notification delivery per channel
- Dispatch latency and deferred queue depth

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from market_monitor.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the market-monitor pipeline.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_delivery("mail", sent=10, failed=1)
        metrics.record_trigger("60min")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Alert counters
        self.alerts_detected = Counter(
            "market_monitor_alerts_detected_total",
            "Candidate alerts produced by threshold rules",
            ["alert_type"],
        )

        self.alerts_emitted = Counter(
            "market_monitor_alerts_emitted_total",
            "Alerts that passed deduplication",
            ["origin"],  # threshold, release
        )

        self.alerts_suppressed = Counter(
            "market_monitor_alerts_suppressed_total",
            "Alerts suppressed as duplicates",
            ["origin"],
        )

        self.dedup_store_errors = Counter(
            "market_monitor_dedup_store_errors_total",
            "Alert log failures during dedup (alert emitted anyway)",
        )

        # Scheduler
        self.release_triggers_fired = Counter(
            "market_monitor_release_triggers_fired_total",
            "Release notification flags fired",
            ["flag"],
        )

        self.scheduler_ticks = Counter(
            "market_monitor_scheduler_ticks_total",
            "Scheduler polling ticks",
            ["status"],  # ok, store_error, disabled
        )

        # Delivery
        self.notifications = Counter(
            "market_monitor_notifications_total",
            "Per-recipient notification outcomes",
            ["channel", "result"],  # result: sent, failed, expired, skipped
        )

        self.dispatch_latency = Histogram(
            "market_monitor_dispatch_latency_seconds",
            "Time for one alert fan-out to settle across all channels",
            ["tier"],  # immediate, deferred
            buckets=LATENCY_BUCKETS,
        )

        self.deferred_queue_depth = Gauge(
            "market_monitor_deferred_queue_depth",
            "Notification jobs waiting for deferred delivery",
        )

        self.circuit_state = Gauge(
            "market_monitor_circuit_open",
            "Channel circuit breaker state (1=open, 0=closed)",
            ["channel"],
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_emission(self, origin: str, emitted: bool) -> None:
        """
        Record a dedup decision.

        Args:
            origin: Alert origin (threshold, release)
            emitted: Whether the alert passed deduplication
        """
        if emitted:
            self.alerts_emitted.labels(origin=origin).inc()
        else:
            self.alerts_suppressed.labels(origin=origin).inc()

    def record_delivery(
        self,
        channel: str,
        sent: int = 0,
        failed: int = 0,
        expired: int = 0,
        skipped: int = 0,
    ) -> None:
        """
        Record delivery counts for one channel batch.

        Args:
            channel: Channel name (mail, push, chat)
            sent: Successful deliveries
            failed: Transient failures
            expired: Terminal endpoint failures
            skipped: Recipients not attempted
        """
        for result, count in (
            ("sent", sent),
            ("failed", failed),
            ("expired", expired),
            ("skipped", skipped),
        ):
            if count:
                self.notifications.labels(channel=channel, result=result).inc(count)

    def record_trigger(self, flag: str) -> None:
        """Record a fired release notification flag."""
        self.release_triggers_fired.labels(flag=flag).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
