"""Health check router.

Endpoints:
    GET /api/health - Overall health status (no auth)
"""

from __future__ import annotations

from datetime import datetime, timezone

import firebase_admin
from fastapi import APIRouter

from .. import config
from ..models import HealthStatus

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthStatus)
async def health_check() -> dict:
    """Basic health check - no auth required."""
    try:
        firebase_admin.get_app()
        firebase = {"initialized": True}
    except ValueError:
        firebase = {"initialized": False}

    return {
        "status": "healthy" if firebase["initialized"] else "degraded",
        "firebase": firebase,
        "version": config.API_VERSION,
        "timestamp": datetime.now(timezone.utc),
    }
