"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from market_monitor.alerts.repository import AlertRepository
from market_monitor.alerts.service import AlertService
from market_monitor.api.app import create_app
from market_monitor.api.dependencies import (
    get_alert_repository,
    get_alert_service,
    get_chat_processor,
    get_database,
    get_release_repository,
)
from market_monitor.notifications.chat_commands import ChatState, CommandResult
from market_monitor.releases.repository import ReleaseRepository


@pytest.fixture
def mock_db():
    """Mock Database that reports healthy."""
    db = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    return db


@pytest.fixture
def mock_alert_repo():
    """Mock AlertRepository."""
    repo = AsyncMock(spec=AlertRepository)
    repo.get_recent = AsyncMock(return_value=[])
    repo.acknowledge = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def mock_release_repo():
    """Mock ReleaseRepository."""
    repo = AsyncMock(spec=ReleaseRepository)
    repo.load_releases = AsyncMock(return_value=[])
    repo.add_release = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def mock_alert_service():
    """Mock AlertService."""
    service = AsyncMock(spec=AlertService)
    service.process_snapshot = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_chat_processor():
    """Mock ChatCommandProcessor."""
    processor = AsyncMock()
    processor.handle = AsyncMock(
        return_value=CommandResult(state=ChatState.SUBSCRIBED, reply="ok", changed=True)
    )
    return processor


@pytest.fixture
def client(
    mock_db, mock_alert_repo, mock_release_repo, mock_chat_processor, mock_alert_service,
):
    """Test client with every dependency overridden."""
    app = create_app()
    app.dependency_overrides[get_database] = lambda: mock_db
    app.dependency_overrides[get_alert_repository] = lambda: mock_alert_repo
    app.dependency_overrides[get_release_repository] = lambda: mock_release_repo
    app.dependency_overrides[get_chat_processor] = lambda: mock_chat_processor
    app.dependency_overrides[get_alert_service] = lambda: mock_alert_service
    yield TestClient(app)
    app.dependency_overrides.clear()
