"""Economic release calendar and its notification scheduler.

Components:
- ScheduledRelease / NotificationFlag: Calendar entry and one-shot flags
- generate_default_releases: CPI/PCE default calendar
- ReleaseRepository: Calendar persistence with atomic flag marking
- ReleaseScheduler: Tick-driven 24h warning, countdowns and post-release data
- SnapshotProvider / ReleaseAnalyst: External collaborator interfaces
"""

from market_monitor.releases.calendar import generate_default_releases
from market_monitor.releases.collaborators import ReleaseAnalyst, SnapshotProvider
from market_monitor.releases.config import SchedulerConfig
from market_monitor.releases.repository import ReleaseRepository
from market_monitor.releases.scheduler import ReleaseScheduler
from market_monitor.releases.schemas import (
    VALID_IMPACTS,
    VALID_RELEASE_KINDS,
    NotificationFlag,
    ReleaseStats,
    ScheduledRelease,
)

__all__ = [
    "NotificationFlag",
    "ReleaseAnalyst",
    "ReleaseRepository",
    "ReleaseScheduler",
    "ReleaseStats",
    "ScheduledRelease",
    "SchedulerConfig",
    "SnapshotProvider",
    "VALID_IMPACTS",
    "VALID_RELEASE_KINDS",
    "generate_default_releases",
]
