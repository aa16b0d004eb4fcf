"""Release scheduler configuration.

All settings can be overridden via ``SCHEDULER_*`` environment variables.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """Configuration for the release notification scheduler."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = Field(
        default=True,
        description="Master switch; disabled ticks do nothing",
    )
    poll_interval_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Tick period; also the width of every trigger window",
    )
    countdown_minutes: list[int] = Field(
        default=[60, 30, 15, 5],
        description="Countdown notifications, minutes before release",
    )
    warning_minutes: int = Field(
        default=1440,
        ge=60,
        description="Lead time of the advance warning with prediction",
    )
    post_release_delay_minutes: int = Field(
        default=1,
        ge=0,
        le=60,
        description="Delay after release before collecting data",
    )

    @field_validator("countdown_minutes")
    @classmethod
    def validate_countdown(cls, v: list[int]) -> list[int]:
        allowed = {60, 30, 15, 5}
        unknown = set(v) - allowed
        if unknown:
            raise ValueError(f"Unsupported countdown minutes: {sorted(unknown)}")
        return sorted(set(v), reverse=True)
