"""Alert endpoints for retrieving and acknowledging alerts."""

import time
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
import structlog

from market_monitor.alerts.repository import AlertRepository
from market_monitor.alerts.schemas import (
    VALID_ALERT_TYPES,
    VALID_SEVERITIES,
    Alert,
    MetricSnapshot,
    thaw_details,
)
from market_monitor.alerts.service import AlertService
from market_monitor.api.dependencies import get_alert_repository, get_alert_service
from market_monitor.api.models import (
    AlertAcknowledgeResponse,
    AlertItem,
    AlertsResponse,
    ErrorResponse,
    SnapshotResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()


def _to_item(alert: Alert) -> AlertItem:
    return AlertItem(
        alert_id=alert.alert_id,
        alert_type=alert.alert_type,
        severity=alert.severity,
        metric=alert.metric,
        value=alert.value,
        message=alert.message,
        details=thaw_details(alert.details),
        acknowledged=alert.acknowledged,
        created_at=alert.created_at.isoformat(),
    )


@router.get(
    "/alerts",
    response_model=AlertsResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Invalid filter parameter"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="List alerts",
    description=(
        "List alerts with optional filtering by severity, alert type "
        "and acknowledgement status. Ordered by most recent first."
    ),
)
async def list_alerts(
    severity: str | None = Query(
        default=None,
        description="Filter by severity: low, medium, high",
    ),
    alert_type: str | None = Query(
        default=None,
        description="Filter by alert type, e.g. SSR_BULLISH or RELEASE_COUNTDOWN",
    ),
    acknowledged: bool | None = Query(
        default=None,
        description="Filter by acknowledgement status",
    ),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum alerts to return"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
    alert_repo: AlertRepository = Depends(get_alert_repository),
) -> AlertsResponse:
    start_time = time.perf_counter()

    if severity and severity not in VALID_SEVERITIES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"Invalid severity {severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            ),
        )

    if alert_type and alert_type not in VALID_ALERT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"Invalid alert_type {alert_type!r}. "
                f"Must be one of: {sorted(VALID_ALERT_TYPES)}"
            ),
        )

    try:
        alerts = await alert_repo.get_recent(
            severity=severity,
            alert_type=alert_type,
            acknowledged=acknowledged,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        logger.error("Failed to list alerts", error=str(e), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list alerts: {str(e)}",
        )

    items = [_to_item(a) for a in alerts]
    latency_ms = (time.perf_counter() - start_time) * 1000

    logger.info(
        "Alerts listed",
        total=len(items),
        severity=severity,
        alert_type=alert_type,
        latency_ms=round(latency_ms, 2),
    )

    return AlertsResponse(
        alerts=items,
        total=len(items),
        latency_ms=round(latency_ms, 2),
    )


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertAcknowledgeResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Alert not found or already acknowledged"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="Acknowledge an alert",
)
async def acknowledge_alert(
    alert_id: str,
    alert_repo: AlertRepository = Depends(get_alert_repository),
) -> AlertAcknowledgeResponse:
    start_time = time.perf_counter()

    try:
        updated = await alert_repo.acknowledge(alert_id)
    except Exception as e:
        logger.error("Failed to acknowledge alert", alert_id=alert_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to acknowledge alert: {str(e)}",
        )

    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id!r} not found or already acknowledged",
        )

    latency_ms = (time.perf_counter() - start_time) * 1000
    logger.info("Alert acknowledged", alert_id=alert_id)

    return AlertAcknowledgeResponse(
        alert_id=alert_id,
        acknowledged=True,
        latency_ms=round(latency_ms, 2),
    )


@router.post(
    "/snapshots",
    response_model=SnapshotResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Malformed snapshot"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="Submit a metric snapshot",
    description=(
        "Run threshold detection on a metric snapshot. Accepts flat keys "
        "(ssr, btc_dominance, btc_net_flow, eth_net_flow, stablecoin_change_24h) "
        "or the collector's nested payload. Emitted alerts are deduplicated "
        "and routed to subscribers."
    ),
)
async def submit_snapshot(
    payload: dict[str, Any] = Body(..., description="Metric snapshot"),
    alert_service: AlertService = Depends(get_alert_service),
) -> SnapshotResponse:
    start_time = time.perf_counter()

    try:
        snapshot = MetricSnapshot.from_dict(payload)
    except (TypeError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid snapshot: {str(e)}",
        )

    try:
        emitted = await alert_service.process_snapshot(snapshot)
    except Exception as e:
        logger.error("Failed to process snapshot", error=str(e), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process snapshot: {str(e)}",
        )

    items = [_to_item(a) for a in emitted]
    latency_ms = (time.perf_counter() - start_time) * 1000

    logger.info("Snapshot processed", emitted=len(items), latency_ms=round(latency_ms, 2))

    return SnapshotResponse(
        alerts=items,
        total=len(items),
        latency_ms=round(latency_ms, 2),
    )
