"""Notification delivery configuration.

All settings can be overridden via ``NOTIFICATIONS_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from market_monitor.notifications.retry import RetryPolicy


class NotificationConfig(BaseSettings):
    """Configuration for routing, dispatch and deferred delivery."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Tiering
    free_tier_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="Delay applied to free-tier deliveries",
    )
    deferred_flush_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="How often the deferred queue is checked for due jobs",
    )
    deferred_queue_key: str = Field(
        default="notify:deferred",
        description="Redis list key for the deferred queue",
    )

    # Per-send behaviour
    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout for a single provider call",
    )
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts per recipient for transient errors",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay before the first retry in seconds",
    )
    retry_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound on a single retry delay in seconds",
    )

    # Circuit breaker
    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failed batches before the circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=5.0,
        description="Seconds before an open circuit probes recovery",
    )

    def retry_policy(self) -> RetryPolicy:
        """Build the RetryPolicy shared by all channel adapters."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )
