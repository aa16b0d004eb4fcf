"""Alert detection configuration.

Holds the threshold rule table and deduplication windows. All settings
can be overridden via ``ALERTS_*`` environment variables.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for threshold detection and deduplication."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Deduplication
    dedup_window_minutes: int = Field(
        default=60,
        ge=1,
        le=10080,
        description="Window in which an equal threshold alert is suppressed",
    )
    release_dedup_window_minutes: int = Field(
        default=60,
        ge=1,
        le=10080,
        description="Window in which an equal release alert is suppressed",
    )
    dedup_value_decimals: int = Field(
        default=2,
        ge=0,
        le=8,
        description="Decimal places the value is rounded to in the dedup key",
    )

    # Collection
    snapshot_interval_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="How often the running service pulls a snapshot from its provider",
    )

    # Stablecoin supply ratio bands
    ssr_very_bullish: float = Field(default=2.0, description="SSR below this is very bullish (high)")
    ssr_bullish: float = Field(default=4.0, description="SSR below this is bullish (medium)")
    ssr_bearish: float = Field(default=6.0, description="SSR above this is bearish (medium)")
    ssr_very_bearish: float = Field(default=8.0, description="SSR above this is very bearish (high)")

    # Bitcoin dominance bands (percent)
    btc_dominance_high: float = Field(default=55.0, ge=0.0, le=100.0)
    btc_dominance_low: float = Field(default=40.0, ge=0.0, le=100.0)

    # Exchange net flow notional threshold (USD, absolute)
    exchange_flow_threshold: float = Field(
        default=1_000_000.0,
        gt=0.0,
        description="Absolute net flow above which inflow/outflow alerts fire",
    )

    # Stablecoin market cap 24h change (percent, absolute)
    stablecoin_change_threshold: float = Field(
        default=5.0,
        gt=0.0,
        description="Absolute 24h change above which growth/decline alerts fire",
    )

    @model_validator(mode="after")
    def _check_band_order(self) -> "AlertConfig":
        if not (
            self.ssr_very_bullish <= self.ssr_bullish
            <= self.ssr_bearish <= self.ssr_very_bearish
        ):
            raise ValueError("SSR bands must be ordered very_bullish <= bullish <= bearish <= very_bearish")
        if self.btc_dominance_low >= self.btc_dominance_high:
            raise ValueError("btc_dominance_low must be below btc_dominance_high")
        return self
