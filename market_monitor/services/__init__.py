"""Services that wire and run the alert pipeline."""

from market_monitor.services.monitor_service import MonitorService, build_channels

__all__ = ["MonitorService", "build_channels"]
