"""
Health check endpoints.

- /healthz: Liveness probe (always 200 if service alive)
- /readyz: Readiness probe (200 only if the scheduler is accepting work)
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

from .. import __version__

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/healthz", status_code=200, summary="Liveness probe")
async def liveness_check() -> Dict[str, Any]:
    """Liveness probe - always returns 200 if service is alive."""
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "analytics-dispatch",
        "version": __version__,
    }


@router.get("/readyz", summary="Readiness probe")
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """Readiness probe - 503 until the background scheduler is running."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    scheduler = getattr(dispatcher, "scheduler", None)
    is_healthy = getattr(scheduler, "is_healthy", None)
    scheduler_ready = bool(is_healthy()) if callable(is_healthy) else False

    if not scheduler_ready:
        logger.warning("Readiness check failed", scheduler_ready=scheduler_ready)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if scheduler_ready else "not_ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"scheduler": scheduler_ready},
    }
