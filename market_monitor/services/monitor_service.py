"""
Monitor service - wires and runs the alert pipeline.

Builds the repositories, channels, dispatcher, router, deferred queue,
alert service and release scheduler from configuration, then runs the
periodic loops (release scheduler ticks, deferred delivery flushes and,
with a snapshot provider, threshold detection) until stopped.

Features:
- Channel auto-configuration from settings
- Periodic snapshot collection when a SnapshotProvider is injected
- Optional Redis backing for the deferred queue
- Graceful shutdown
- Health reporting
"""

import asyncio
from typing import Any

import redis.asyncio as redis
import structlog

from market_monitor.alerts.collector import HttpSnapshotProvider
from market_monitor.alerts.config import AlertConfig
from market_monitor.alerts.dedup import Deduplicator
from market_monitor.alerts.repository import AlertRepository
from market_monitor.alerts.schemas import Alert
from market_monitor.alerts.service import AlertService
from market_monitor.config.settings import Settings, get_settings
from market_monitor.notifications.channels import (
    ChatChannel,
    MailChannel,
    NotificationChannel,
    PushChannel,
)
from market_monitor.notifications.chat_commands import ChatCommandProcessor
from market_monitor.notifications.config import NotificationConfig
from market_monitor.notifications.deferred import DeferredDeliveryQueue
from market_monitor.notifications.dispatcher import NotificationDispatcher
from market_monitor.notifications.repository import SubscriberRepository
from market_monitor.notifications.router import NotificationRouter
from market_monitor.releases.collaborators import ReleaseAnalyst, SnapshotProvider
from market_monitor.releases.config import SchedulerConfig
from market_monitor.releases.repository import ReleaseRepository
from market_monitor.releases.scheduler import ReleaseScheduler
from market_monitor.storage.database import Database

logger = structlog.get_logger(__name__)


def build_channels(
    settings: Settings,
    config: NotificationConfig,
) -> list[NotificationChannel]:
    """Create a channel for every provider that has credentials configured."""
    retry = config.retry_policy()
    timeout = config.send_timeout_seconds
    channels: list[NotificationChannel] = []

    if settings.mail_configured:
        channels.append(
            MailChannel(
                host=settings.smtp_host,
                port=settings.smtp_port,
                sender=settings.mail_sender,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                timeout=timeout,
                retry=retry,
            )
        )
        logger.info("Mail channel enabled", host=settings.smtp_host)

    if settings.push_configured:
        channels.append(
            PushChannel(
                gateway_url=settings.push_gateway_url,
                token=settings.push_gateway_token,
                timeout=timeout,
                retry=retry,
            )
        )
        logger.info("Push channel enabled")

    if settings.chat_configured:
        channels.append(
            ChatChannel(
                bot_token=settings.telegram_bot_token,
                api_base=settings.telegram_api_base,
                timeout=timeout,
                retry=retry,
            )
        )
        logger.info("Chat channel enabled")

    if not channels:
        logger.warning("No notification channels configured, alerts will only be logged")
    return channels


class MonitorService:
    """
    Service that owns the alert pipeline and its background loops.

    Usage:
        async with Database() as db:
            service = MonitorService(db)
            await service.start()  # Runs until stopped
    """

    def __init__(
        self,
        database: Database,
        settings: Settings | None = None,
        alert_config: AlertConfig | None = None,
        notification_config: NotificationConfig | None = None,
        scheduler_config: SchedulerConfig | None = None,
        channels: list[NotificationChannel] | None = None,
        redis_client: Any | None = None,
        analyst: ReleaseAnalyst | None = None,
        snapshot_provider: SnapshotProvider | None = None,
    ):
        """
        Initialize and wire the pipeline.

        Args:
            database: Connected (or soon to be connected) database
            settings: Application settings (defaults to get_settings())
            alert_config: Threshold and dedup tuning
            notification_config: Delivery tuning
            scheduler_config: Release scheduler tuning
            channels: Channel adapters (or auto-create from settings)
            redis_client: Backs the deferred queue when given
            analyst: Release prediction/analysis collaborator
            snapshot_provider: Fresh metric snapshot collaborator
                (defaults to an HTTP collector when SNAPSHOT_SOURCE_URL is set)
        """
        self._settings = settings or get_settings()
        self._alert_config = alert_config or AlertConfig()
        self._notification_config = notification_config or NotificationConfig()
        self._scheduler_config = scheduler_config or SchedulerConfig()

        self._running = False
        self._tasks: list[asyncio.Task] = []
        if snapshot_provider is None and self._settings.snapshot_source_url:
            snapshot_provider = HttpSnapshotProvider(
                self._settings.snapshot_source_url,
                timeout=self._settings.snapshot_source_timeout,
            )
        self._snapshot_provider = snapshot_provider
        self._redis = redis_client
        if self._redis is None and self._settings.deferred_queue_use_redis:
            self._redis = redis.from_url(str(self._settings.redis_url))

        # Stores
        self.alert_repository = AlertRepository(
            database, dedup_value_decimals=self._alert_config.dedup_value_decimals,
        )
        self.release_repository = ReleaseRepository(database)
        self.subscriber_repository = SubscriberRepository(database)

        # Delivery
        if channels is None:
            channels = build_channels(self._settings, self._notification_config)
        self.dispatcher = NotificationDispatcher(
            channels,
            config=self._notification_config,
            on_expired=self.subscriber_repository.deactivate_push_endpoint,
        )
        self.deferred_queue = DeferredDeliveryQueue(
            self.dispatcher,
            delay_seconds=self._notification_config.free_tier_delay_seconds,
            redis_client=self._redis,
            redis_key=self._notification_config.deferred_queue_key,
        )
        self.router = NotificationRouter(
            self.subscriber_repository, self.dispatcher, self.deferred_queue,
        )

        # Detection
        self.alert_service = AlertService(
            self._alert_config,
            Deduplicator(
                self.alert_repository,
                dedup_value_decimals=self._alert_config.dedup_value_decimals,
            ),
            router=self.router,
        )
        self.scheduler = ReleaseScheduler(
            self.release_repository,
            self.alert_service,
            config=self._scheduler_config,
            analyst=analyst,
            snapshot_provider=snapshot_provider,
        )

        chat = next((c for c in channels if isinstance(c, ChatChannel)), None)
        self.chat_processor = ChatCommandProcessor(self.subscriber_repository, chat)

        logger.info(
            "Monitor service initialized",
            channels=[c.name for c in channels],
            deferred_backend="redis" if self._redis is not None else "memory",
            snapshot_collection=snapshot_provider is not None,
            scheduler_enabled=self._scheduler_config.enabled,
        )

    async def init_db(self) -> None:
        """Create every table the pipeline uses."""
        await self.alert_repository.create_tables()
        await self.release_repository.create_tables()
        await self.subscriber_repository.create_tables()
        logger.info("Database tables ensured")

    async def start(self) -> None:
        """
        Start the scheduler and deferred delivery loops.

        Runs until stop() is called or a fatal error occurs.
        """
        self._running = True
        logger.info("Starting monitor service")

        try:
            self._tasks = [
                asyncio.create_task(self.scheduler.run(), name="release_scheduler"),
                asyncio.create_task(
                    self.deferred_queue.run(
                        self._notification_config.deferred_flush_interval_seconds
                    ),
                    name="deferred_delivery",
                ),
            ]
            if self._snapshot_provider is not None:
                self._tasks.append(
                    asyncio.create_task(self._collection_loop(), name="snapshot_collection")
                )
            await asyncio.gather(*self._tasks, return_exceptions=True)

        except asyncio.CancelledError:
            logger.info("Monitor service cancelled")
        except Exception as e:
            logger.error("Monitor service error", error=str(e))
            raise
        finally:
            await self.close()

    async def stop(self) -> None:
        """Stop the service gracefully."""
        logger.info("Stopping monitor service")
        self._running = False
        self.scheduler.stop()
        self.deferred_queue.stop()

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Release the Redis client and reset task state."""
        if self._redis is not None:
            await self._redis.aclose()
        self._tasks.clear()
        self._running = False
        logger.info("Monitor service cleaned up")

    async def collect_once(self) -> list[Alert]:
        """Pull one snapshot from the provider and run threshold detection on it."""
        if self._snapshot_provider is None:
            raise RuntimeError("No snapshot provider configured")
        snapshot = await self._snapshot_provider.collect()
        return await self.alert_service.process_snapshot(snapshot)

    async def _collection_loop(self) -> None:
        interval = self._alert_config.snapshot_interval_minutes * 60
        logger.info(
            "Snapshot collection started",
            interval_minutes=self._alert_config.snapshot_interval_minutes,
        )
        while self._running:
            try:
                emitted = await self.collect_once()
                logger.info("Snapshot processed", emitted=len(emitted))
            except Exception as e:
                logger.error("Snapshot collection failed", error=str(e))
            await asyncio.sleep(interval)

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._running

    async def health_check(self) -> dict[str, Any]:
        """
        Check health of the monitor service.

        Returns:
            Dictionary with health status
        """
        return {
            "running": self._running,
            "channels": {
                ch.name: ch.state.value for ch in self.dispatcher.channels
            },
            "deferred_backend": "redis" if self.deferred_queue.uses_redis else "memory",
            "deferred_depth": await self.deferred_queue.depth(),
            "scheduler_enabled": self._scheduler_config.enabled,
            "active_tasks": len([t for t in self._tasks if not t.done()]),
        }
