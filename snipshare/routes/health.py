"""
SnipShare — Health Check Route
==============================

What:  GET /health for container probes and monitoring.
How:   Pings the auth service's health endpoint and reports lease pool and
       session counters alongside.

Status levels:
    healthy:   backend reachable
    degraded:  backend unreachable (still HTTP 200; the service itself is up)
"""

import logging
import time

from fastapi import APIRouter, Depends

from snipshare import __version__
from snipshare.dependencies import AppServices, get_services
from snipshare.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(services: AppServices = Depends(get_services)) -> HealthResponse:
    reachable = await services.backend.health_check()
    if not reachable:
        logger.warning("Health check: backend unreachable")

    return HealthResponse(
        status="healthy" if reachable else "degraded",
        version=__version__,
        backend="connected" if reachable else "disconnected",
        pool=services.pool.stats,
        sessions=len(services.registry),
        uptime_seconds=round(time.time() - services.started_at, 2),
    )
