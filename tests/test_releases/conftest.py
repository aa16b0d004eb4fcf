"""Shared fixtures for release scheduler tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from market_monitor.releases.schemas import ScheduledRelease

RELEASE_AT = datetime(2026, 3, 12, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def release() -> ScheduledRelease:
    """A high-impact CPI release at 08:30 New York time."""
    return ScheduledRelease(
        id="cpi_2026_3",
        kind="CPI",
        title="Consumer Price Index (CPI) - March 2026",
        scheduled_at=RELEASE_AT,
        impact="high",
        source="BLS",
        url="https://www.bls.gov/schedule/news_release/cpi.htm",
    )


@pytest.fixture
def mock_release_repo(release):
    """ReleaseRepository mock that serves the same release object every tick."""
    repo = AsyncMock()
    repo.load_releases.return_value = [release]
    repo.mark_flag.return_value = True
    return repo


@pytest.fixture
def mock_alert_service():
    service = AsyncMock()
    service.emit.return_value = True
    return service
