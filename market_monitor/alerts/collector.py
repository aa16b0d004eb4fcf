"""Snapshot provider that pulls metrics from an HTTP collector endpoint."""

import logging

import httpx

from market_monitor.alerts.schemas import MetricSnapshot

logger = logging.getLogger(__name__)


class SnapshotCollectionError(Exception):
    """The collector could not be reached or returned an unusable payload."""


class HttpSnapshotProvider:
    """
    Fetch the latest metric snapshot with a GET request.

    The endpoint may answer with flat keys or the collector's nested payload;
    both are accepted by ``MetricSnapshot.from_dict``.
    """

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def collect(self) -> MetricSnapshot:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(self._url)
        except httpx.HTTPError as e:
            raise SnapshotCollectionError(f"Collector unreachable: {e}") from e

        if not resp.is_success:
            raise SnapshotCollectionError(f"Collector returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise SnapshotCollectionError(f"Collector returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SnapshotCollectionError("Collector payload is not an object")

        try:
            snapshot = MetricSnapshot.from_dict(data)
        except (TypeError, ValueError) as e:
            raise SnapshotCollectionError(f"Malformed snapshot: {e}") from e

        logger.debug("Collected snapshot from %s", self._url)
        return snapshot
