"""Tests for structured logging and pipeline context binding."""

import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from market_monitor.alerts.config import AlertConfig
from market_monitor.alerts.schemas import Alert
from market_monitor.alerts.service import AlertService
from market_monitor.config.settings import Settings
from market_monitor.notifications.deferred import DeferredDeliveryQueue
from market_monitor.notifications.schemas import NotificationJob, Subscriber
from market_monitor.observability.logging import (
    bind_context,
    clear_context,
    drop_unset_fields,
    pipeline_context,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def empty_context():
    clear_context()
    yield
    clear_context()


def _alert() -> Alert:
    return Alert(
        alert_id="alert-001",
        alert_type="SSR_BULLISH",
        severity="medium",
        metric="ssr",
        value=3.0,
        message="SSR at 3.00",
    )


# ── setup_logging ────────────────────────────────────────


class TestSetupLogging:
    """Renderer selection and the stdlib bridge."""

    def test_production_renders_json(self, restore_root_logger):
        settings = Settings(_env_file=None, environment="production", log_level="WARNING")
        with patch("market_monitor.observability.logging.get_settings", return_value=settings):
            setup_logging()

        root = logging.getLogger()
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)
        assert root.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("aiosmtplib").level == logging.WARNING

    def test_development_renders_console(self, restore_root_logger):
        with patch(
            "market_monitor.observability.logging.get_settings",
            return_value=Settings(_env_file=None),
        ):
            setup_logging()

        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_stdlib_record_carries_pipeline_context(self, restore_root_logger, capsys):
        settings = Settings(_env_file=None, environment="production", log_level="INFO")
        with patch("market_monitor.observability.logging.get_settings", return_value=settings):
            setup_logging()
        capsys.readouterr()

        with pipeline_context(alert_id="alert-001", release_id=None):
            logging.getLogger("market_monitor.alerts.service").warning(
                "Notification routing failed for %s: %s", "alert-001", "boom",
            )

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "Notification routing failed for alert-001: boom"
        assert line["alert_id"] == "alert-001"
        assert line["level"] == "warning"
        assert line["logger"] == "market_monitor.alerts.service"
        assert line["service"] == "market-monitor"
        assert "release_id" not in line


# ── Context helpers ──────────────────────────────────────


class TestPipelineContext:
    """Scoped binding of pipeline identifiers."""

    def test_nested_blocks_restore_outer_context(self):
        with pipeline_context(release_id="cpi_2026_3", flag="24h"):
            with pipeline_context(alert_id="alert-001", tier=None):
                assert structlog.contextvars.get_contextvars() == {
                    "release_id": "cpi_2026_3",
                    "flag": "24h",
                    "alert_id": "alert-001",
                }
            assert structlog.contextvars.get_contextvars() == {
                "release_id": "cpi_2026_3",
                "flag": "24h",
            }
        assert structlog.contextvars.get_contextvars() == {}

    def test_restored_on_error(self):
        with pytest.raises(RuntimeError):
            with pipeline_context(alert_id="alert-001"):
                raise RuntimeError("boom")
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_and_clear_context(self):
        bind_context(request_id="req-1")
        assert structlog.contextvars.get_contextvars() == {"request_id": "req-1"}
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_drop_unset_fields(self):
        event = {"event": "Alert routed", "alert_id": "a", "release_id": None, "sent": 0}
        assert drop_unset_fields(None, "info", event) == {
            "event": "Alert routed", "alert_id": "a", "sent": 0,
        }


# ── Pipeline call sites ─────────────────────────────────


class TestPipelineBinding:
    """Identifiers are bound while an alert moves through the pipeline."""

    @pytest.mark.asyncio
    async def test_emit_binds_alert_for_routing(self):
        seen: list[dict] = []
        router = AsyncMock()
        router.route.side_effect = lambda alert: seen.append(
            structlog.contextvars.get_contextvars()
        )
        dedup = AsyncMock()
        dedup.try_emit.return_value = True

        service = AlertService(AlertConfig(), dedup, router=router)
        assert await service.emit(_alert())

        assert seen == [{"alert_id": "alert-001", "alert_type": "SSR_BULLISH"}]
        assert structlog.contextvars.get_contextvars() == {}

    @pytest.mark.asyncio
    async def test_deferred_flush_binds_alert_and_tier(self):
        seen: list[dict] = []
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = lambda alert, jobs, tier: seen.append(
            structlog.contextvars.get_contextvars()
        )
        queue = DeferredDeliveryQueue(dispatcher, delay_seconds=30)
        alert = _alert()
        now = datetime.now(timezone.utc)
        subscriber = Subscriber(subscriber_id="free", email="f@example.com", email_enabled=True)
        await queue.enqueue(alert, [NotificationJob(alert, subscriber, "mail")], now=now)

        assert await queue.flush_due(now + timedelta(seconds=31)) == 1
        assert seen == [{"alert_id": "alert-001", "tier": "deferred"}]
