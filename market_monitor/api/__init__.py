"""
FastAPI service for the market monitor.

Provides REST API for:
- GET /health - Service health check
- GET /alerts, POST /alerts/{alert_id}/acknowledge - Alert log
- POST /snapshots - Threshold detection on a pushed metric snapshot
- GET /releases/upcoming|next|stats, POST /releases - Release calendar
- POST /chat/webhook - Chat bot commands
"""

from market_monitor.api.app import create_app

__all__ = ["create_app"]
