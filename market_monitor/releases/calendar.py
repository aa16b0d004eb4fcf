"""Default release calendar and pure calendar queries."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from market_monitor.releases.schemas import ReleaseStats, ScheduledRelease

RELEASE_TIMEZONE = "America/New_York"
RELEASE_TIME = time(8, 30)

# kind -> (day of month, source, title prefix, description, url)
_DEFAULT_SERIES = {
    "CPI": (
        13,
        "BLS",
        "Consumer Price Index (CPI)",
        "Monthly inflation data from Bureau of Labor Statistics",
        "https://www.bls.gov/schedule/news_release/cpi.htm",
    ),
    "PCE": (
        28,
        "BEA",
        "Personal Consumption Expenditures (PCE)",
        "Monthly inflation data from Bureau of Economic Analysis",
        "https://www.bea.gov/data/personal-consumption-expenditures-price-index",
    ),
}


def next_business_day(day: date) -> date:
    """Shift Saturday and Sunday forward to Monday."""
    if day.weekday() == 5:
        return day + timedelta(days=2)
    if day.weekday() == 6:
        return day + timedelta(days=1)
    return day


def generate_default_releases(
    start_year: int | None = None,
    years: int = 2,
) -> list[ScheduledRelease]:
    """Generate CPI and PCE releases for ``years`` calendar years.

    CPI lands on the 13th and PCE on the 28th of each month, moved to the
    following Monday when that falls on a weekend, at 08:30 New York time.
    """
    start_year = start_year or datetime.now(timezone.utc).year
    tz = ZoneInfo(RELEASE_TIMEZONE)
    releases: list[ScheduledRelease] = []

    for kind, (day, source, prefix, description, url) in _DEFAULT_SERIES.items():
        for year in range(start_year, start_year + years):
            for month in range(1, 13):
                release_day = next_business_day(date(year, month, day))
                releases.append(
                    ScheduledRelease(
                        id=f"{kind.lower()}_{year}_{month}",
                        kind=kind,
                        title=f"{prefix} - {release_day.strftime('%B %Y')}",
                        scheduled_at=datetime.combine(release_day, RELEASE_TIME, tzinfo=tz),
                        timezone=RELEASE_TIMEZONE,
                        impact="high",
                        source=source,
                        description=description,
                        url=url,
                    )
                )
    return releases


def upcoming(
    releases: list[ScheduledRelease],
    now: datetime,
    limit: int = 10,
) -> list[ScheduledRelease]:
    """Releases after ``now``, soonest first."""
    future = sorted(
        (r for r in releases if r.scheduled_at > now),
        key=lambda r: r.scheduled_at,
    )
    return future[:limit]


def next_high_impact(
    releases: list[ScheduledRelease],
    now: datetime,
) -> ScheduledRelease | None:
    for release in upcoming(releases, now, limit=len(releases)):
        if release.impact == "high":
            return release
    return None


def stats(releases: list[ScheduledRelease], now: datetime) -> ReleaseStats:
    future = upcoming(releases, now, limit=len(releases))
    return ReleaseStats(
        total=len(releases),
        upcoming=len(future),
        past=sum(1 for r in releases if r.scheduled_at < now),
        high_impact_upcoming=sum(1 for r in future if r.impact == "high"),
        next_release=future[0] if future else None,
    )


def custom_release_id(now: datetime | None = None) -> str:
    """Id for a manually added release, unique to the millisecond."""
    now = now or datetime.now(timezone.utc)
    return f"custom_{int(now.timestamp() * 1000)}"
