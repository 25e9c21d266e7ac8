"""
Health check endpoint for monitoring and orchestration.

Reports:
- Database connectivity
- Uptime
- Coordinator state (cached segments, live sessions, maintenance tasks)

Used by container health checks, load balancers and uptime monitors.
"""

import time
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from barback.core.db import get_db

router = APIRouter(tags=["health"])

# Global app start time (set in lifespan)
_app_start_time: datetime | None = None


def set_app_start_time(start_time: datetime) -> None:
    """Called by lifespan to track when app started."""
    global _app_start_time
    _app_start_time = start_time


def get_uptime_seconds() -> int:
    """Calculate seconds since app start."""
    if _app_start_time is None:
        return 0
    return int((datetime.now() - _app_start_time).total_seconds())


async def check_database(db: AsyncSession) -> dict[str, Any]:
    """
    Check database connectivity.

    Returns: {"status": "ok"|"down", "response_time_ms": N, "error": str (if down)}
    """
    start = time.time()
    try:
        await db.execute(text("SELECT 1"))
        response_time_ms = int((time.time() - start) * 1000)
        return {
            "status": "ok",
            "response_time_ms": response_time_ms,
        }
    except Exception as e:
        response_time_ms = int((time.time() - start) * 1000)
        return {
            "status": "down",
            "response_time_ms": response_time_ms,
            "error": str(type(e).__name__),
        }


def coordinator_status(request: Request) -> dict[str, Any]:
    state = request.app.state
    report: dict[str, Any] = {}
    cache = getattr(state, "catalog_cache", None)
    if cache is not None:
        report["catalog_segments"] = cache.known_keys
    sessions = getattr(state, "sessions", None)
    if sessions is not None:
        report["active_sessions"] = len(sessions)
    notifications = getattr(state, "notifications", None)
    if notifications is not None:
        report["unread_notifications"] = notifications.unread_count()
    scheduler = getattr(state, "scheduler", None)
    if scheduler is not None:
        report["tasks"] = scheduler.status()
    return report


@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description=(
        "Returns API health status including uptime and dependency checks. "
        "Returns 200 regardless of degraded dependencies (for graceful degradation)."
    ),
)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """
    Example response (healthy):
        {
            "status": "ok",
            "uptime_seconds": 3600,
            "checks": {"database": {"status": "ok", "response_time_ms": 5}},
            "coordinators": {"active_sessions": 2, ...}
        }
    """
    db_check = await check_database(db)
    overall_status = "ok" if db_check["status"] == "ok" else "degraded"

    response = {
        "status": overall_status,
        "uptime_seconds": get_uptime_seconds(),
        "checks": {
            "database": db_check,
        },
        "coordinators": coordinator_status(request),
    }

    return JSONResponse(
        content=response,
        status_code=status.HTTP_200_OK,
    )
