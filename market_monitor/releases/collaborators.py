"""Interfaces of the external services the scheduler calls.

Metric collection and AI commentary live outside this package; only the
call shapes matter here.
"""

from typing import Any, Protocol, runtime_checkable

from market_monitor.alerts.schemas import MetricSnapshot
from market_monitor.releases.schemas import ScheduledRelease


@runtime_checkable
class SnapshotProvider(Protocol):
    """Collects a fresh snapshot of market metrics on demand."""

    async def collect(self) -> MetricSnapshot: ...


@runtime_checkable
class ReleaseAnalyst(Protocol):
    """Produces commentary around a release.

    ``predict`` runs ahead of the release (24h warning); ``analyze`` runs
    once post-release data is in. Both return JSON-serializable dicts,
    ideally with a ``summary`` key.
    """

    async def predict(self, release: ScheduledRelease) -> dict[str, Any]: ...

    async def analyze(
        self,
        release: ScheduledRelease,
        snapshot: MetricSnapshot | None,
    ) -> dict[str, Any]: ...
