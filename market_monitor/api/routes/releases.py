"""Release calendar endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from market_monitor.api.dependencies import get_release_repository
from market_monitor.api.models import (
    ErrorResponse,
    NextReleaseResponse,
    ReleaseCreateRequest,
    ReleaseItem,
    ReleasesResponse,
    ReleaseStatsResponse,
)
from market_monitor.releases import calendar
from market_monitor.releases.repository import ReleaseRepository
from market_monitor.releases.schemas import ScheduledRelease

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/releases")


def _to_item(release: ScheduledRelease) -> ReleaseItem:
    return ReleaseItem(**release.to_dict())


async def _load(repo: ReleaseRepository) -> list[ScheduledRelease]:
    try:
        return await repo.load_releases()
    except Exception as e:
        logger.error("Failed to load release calendar", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Release calendar unavailable",
        )


@router.get(
    "/upcoming",
    response_model=ReleasesResponse,
    responses={503: {"model": ErrorResponse, "description": "Calendar unavailable"}},
    summary="Upcoming releases",
)
async def upcoming_releases(
    limit: int = Query(default=10, ge=1, le=100, description="Maximum releases to return"),
    repo: ReleaseRepository = Depends(get_release_repository),
) -> ReleasesResponse:
    releases = calendar.upcoming(await _load(repo), datetime.now(timezone.utc), limit)
    return ReleasesResponse(
        releases=[_to_item(r) for r in releases],
        total=len(releases),
    )


@router.get(
    "/next",
    response_model=NextReleaseResponse,
    responses={503: {"model": ErrorResponse, "description": "Calendar unavailable"}},
    summary="Next high-impact release",
)
async def next_release(
    repo: ReleaseRepository = Depends(get_release_repository),
) -> NextReleaseResponse:
    release = calendar.next_high_impact(await _load(repo), datetime.now(timezone.utc))
    return NextReleaseResponse(release=_to_item(release) if release else None)


@router.get(
    "/stats",
    response_model=ReleaseStatsResponse,
    responses={503: {"model": ErrorResponse, "description": "Calendar unavailable"}},
    summary="Calendar statistics",
)
async def release_stats(
    repo: ReleaseRepository = Depends(get_release_repository),
) -> ReleaseStatsResponse:
    stats = calendar.stats(await _load(repo), datetime.now(timezone.utc))
    return ReleaseStatsResponse(
        total=stats.total,
        upcoming=stats.upcoming,
        past=stats.past,
        high_impact_upcoming=stats.high_impact_upcoming,
        next_release=_to_item(stats.next_release) if stats.next_release else None,
    )


@router.post(
    "",
    response_model=ReleaseItem,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse, "description": "Release id already exists"},
        422: {"model": ErrorResponse, "description": "Invalid release"},
    },
    summary="Add a custom release",
)
async def create_release(
    body: ReleaseCreateRequest,
    repo: ReleaseRepository = Depends(get_release_repository),
) -> ReleaseItem:
    try:
        release = ScheduledRelease(
            id=calendar.custom_release_id(),
            kind=body.kind,
            title=body.title,
            scheduled_at=body.scheduled_at,
            timezone=body.timezone,
            impact=body.impact,
            source=body.source,
            description=body.description,
            url=body.url,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    if not await repo.add_release(release):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Release {release.id!r} already exists",
        )

    logger.info("Custom release added", release_id=release.id, kind=release.kind)
    return _to_item(release)
