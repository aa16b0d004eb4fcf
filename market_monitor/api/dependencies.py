"""
Dependency injection for FastAPI endpoints.
"""

import asyncio

from market_monitor.alerts.repository import AlertRepository
from market_monitor.alerts.service import AlertService
from market_monitor.config.settings import get_settings
from market_monitor.notifications.channels import ChatChannel
from market_monitor.notifications.chat_commands import ChatCommandProcessor
from market_monitor.notifications.config import NotificationConfig
from market_monitor.notifications.repository import SubscriberRepository
from market_monitor.releases.repository import ReleaseRepository
from market_monitor.services.monitor_service import MonitorService
from market_monitor.storage.database import Database

# Global instances (initialized on first request)
_database: Database | None = None
_chat_processor: ChatCommandProcessor | None = None
_monitor_service: MonitorService | None = None
_deferred_task: asyncio.Task | None = None


async def get_database() -> Database:
    """Get the shared database, connecting on first use."""
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def get_alert_repository() -> AlertRepository:
    return AlertRepository(await get_database())


async def get_release_repository() -> ReleaseRepository:
    return ReleaseRepository(await get_database())


async def get_chat_processor() -> ChatCommandProcessor:
    """
    Get the chat command processor.

    Replies are sent only when a bot token is configured.
    """
    global _chat_processor

    if _chat_processor is None:
        settings = get_settings()
        channel = None
        if settings.chat_configured:
            channel = ChatChannel(
                bot_token=settings.telegram_bot_token,
                api_base=settings.telegram_api_base,
            )
        _chat_processor = ChatCommandProcessor(
            SubscriberRepository(await get_database()),
            channel,
        )

    return _chat_processor


async def get_alert_service() -> AlertService:
    """
    Get the alert pipeline used for pushed snapshots.

    With the in-memory deferred queue, a flush loop runs in the API process
    so free-tier deliveries still go out.
    """
    global _monitor_service, _deferred_task

    if _monitor_service is None:
        config = NotificationConfig()
        _monitor_service = MonitorService(await get_database(), notification_config=config)
        queue = _monitor_service.deferred_queue
        if not queue.uses_redis:
            _deferred_task = asyncio.create_task(
                queue.run(config.deferred_flush_interval_seconds)
            )

    return _monitor_service.alert_service


async def cleanup_dependencies() -> None:
    """Clean up global dependencies on shutdown."""
    global _database, _chat_processor, _monitor_service, _deferred_task

    _chat_processor = None

    if _monitor_service is not None:
        _monitor_service.deferred_queue.stop()
        if _deferred_task is not None:
            _deferred_task.cancel()
            try:
                await _deferred_task
            except asyncio.CancelledError:
                pass
            _deferred_task = None
        await _monitor_service.close()
        _monitor_service = None

    if _database is not None:
        await _database.close()
        _database = None
