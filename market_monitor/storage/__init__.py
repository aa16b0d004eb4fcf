"""Storage layer for alert, release and subscriber persistence."""

from market_monitor.storage.database import Database

__all__ = ["Database"]
