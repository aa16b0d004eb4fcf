"""
Request and response models for the market-monitor API.
"""

import datetime as dt

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error type",
    )


# Health models


class ComponentHealth(BaseModel):
    """Health of one infrastructure dependency."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict | None = Field(default=None, description="Extra diagnostic details")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, ComponentHealth] = Field(
        default_factory=dict,
        description="Per-dependency health",
    )
    channels: dict[str, bool] = Field(
        default_factory=dict,
        description="Which notification channels are configured",
    )
    service: str = Field(default="market-monitor", description="Service name")
    version: str = Field(default="0.1.0", description="Service version")


# Alert models


class AlertItem(BaseModel):
    """Single alert record."""

    alert_id: str = Field(..., description="Unique alert identifier")
    alert_type: str = Field(..., description="Alert type, e.g. SSR_BULLISH")
    severity: str = Field(..., description="Severity level: low, medium, high")
    metric: str = Field(..., description="Metric or release the alert is about")
    value: float | None = Field(default=None, description="Observed value")
    message: str = Field(..., description="Human-readable description")
    details: dict = Field(default_factory=dict, description="Structured payload")
    acknowledged: bool = Field(default=False, description="Whether the alert has been reviewed")
    created_at: str = Field(..., description="Alert creation timestamp (ISO format)")


class AlertsResponse(BaseModel):
    """Response model for listing alerts."""

    alerts: list[AlertItem] = Field(..., description="List of alerts")
    total: int = Field(..., description="Number of alerts returned")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class AlertAcknowledgeResponse(BaseModel):
    """Response model for acknowledging an alert."""

    alert_id: str = Field(..., description="Acknowledged alert identifier")
    acknowledged: bool = Field(..., description="New acknowledgement status")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class SnapshotResponse(BaseModel):
    """Response model for a processed metric snapshot."""

    alerts: list[AlertItem] = Field(..., description="Alerts emitted for the snapshot")
    total: int = Field(..., description="Number of alerts emitted")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


# Release models


class ReleaseItem(BaseModel):
    """Single scheduled release."""

    id: str = Field(..., description="Release identifier, e.g. cpi_2026_3")
    kind: str = Field(..., description="CPI, PCE, PPI, FOMC, NFP or CUSTOM")
    title: str = Field(..., description="Display title")
    scheduled_at: str = Field(..., description="Release instant (ISO format)")
    timezone: str = Field(..., description="Publishing timezone")
    impact: str = Field(..., description="Expected market impact: low, medium, high")
    source: str = Field(default="", description="Publishing agency")
    description: str = Field(default="", description="What the release covers")
    url: str = Field(default="", description="Reference link")
    notifications_sent: list[str] = Field(
        default_factory=list,
        description="Notification flags already fired",
    )


class ReleasesResponse(BaseModel):
    """Response model for listing releases."""

    releases: list[ReleaseItem] = Field(..., description="Releases, soonest first")
    total: int = Field(..., description="Number of releases returned")


class NextReleaseResponse(BaseModel):
    """Response model for the next high-impact release."""

    release: ReleaseItem | None = Field(default=None, description="Next high-impact release")


class ReleaseStatsResponse(BaseModel):
    """Calendar summary."""

    total: int
    upcoming: int
    past: int
    high_impact_upcoming: int
    next_release: ReleaseItem | None = None


class ReleaseCreateRequest(BaseModel):
    """Request model for adding a custom release."""

    title: str = Field(..., min_length=1, max_length=200, description="Display title")
    scheduled_at: dt.datetime = Field(..., description="Release instant (must include offset)")
    kind: str = Field(default="CUSTOM", description="Release kind")
    timezone: str = Field(default="America/New_York", description="Publishing timezone")
    impact: str = Field(default="medium", description="low, medium or high")
    source: str = Field(default="", max_length=100)
    description: str = Field(default="", max_length=2000)
    url: str = Field(default="", max_length=500)


# Chat models


class ChatWebhookResponse(BaseModel):
    """Outcome of one chat bot update."""

    handled: bool = Field(..., description="Whether the update carried a message")
    state: str | None = Field(default=None, description="Chat state after the command")
