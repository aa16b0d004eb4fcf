"""Shared fixtures for notification tests."""

from datetime import datetime, timezone

import pytest

from market_monitor.alerts.schemas import Alert
from market_monitor.notifications.schemas import PushEndpoint, Subscriber


@pytest.fixture
def sample_alert() -> Alert:
    return Alert(
        alert_id="alert-001",
        alert_type="BTC_EXTREME_INFLOW",
        severity="high",
        metric="exchange_flows",
        value=2_000_000.0,
        message="BTC extreme inflow: $2.00M - Money moving to exchanges (bearish).",
        details={"bound": 1_000_000.0},
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def premium_subscriber() -> Subscriber:
    """Premium subscriber eligible on every channel."""
    return Subscriber(
        subscriber_id="sub-premium",
        email="pro@example.com",
        email_enabled=True,
        push_enabled=True,
        chat_enabled=True,
        chat_verified=True,
        chat_handle="1001",
        push_endpoints=[
            PushEndpoint(endpoint="https://push.example/ep-1", p256dh="k1", auth="a1"),
        ],
        plan_tier="premium",
    )


@pytest.fixture
def free_subscriber() -> Subscriber:
    """Free subscriber with mail only."""
    return Subscriber(
        subscriber_id="sub-free",
        email="free@example.com",
        email_enabled=True,
        plan_tier="free",
    )
