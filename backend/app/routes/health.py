"""
SuperClip Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database and whether a token signing key is configured.

Status levels:
    healthy:   database reachable and signing key present (HTTP 200)
    degraded:  database unreachable while using the in-memory usage store
               (auth endpoints fail, entitlement checks still work)
    unhealthy: signing key missing, or database unreachable while usage is
               stored in it
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text

from app import __version__
from app.config import settings
from app.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    db_status = "connected"
    signing_status = "configured" if settings.jwt_secret else "missing"
    overall = "healthy" if settings.jwt_secret else "unhealthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        from app.database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        if settings.usage_store_backend == "database":
            overall = "unhealthy"
        elif overall != "unhealthy":
            overall = "degraded"
        logger.warning("Health check: database unreachable: %s", str(e))

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        token_signing=signing_status,
        usage_store=settings.usage_store_backend,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
