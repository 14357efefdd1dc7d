"""Health check router: liveness + readiness.

Readiness pings the ledger database with a 2s timeout so a hung connection
pool cannot stall the probe.
"""

import asyncio

import structlog
from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from apps.api.core.database import ping

router = APIRouter(tags=["health"])
logger = structlog.get_logger()

DATABASE_TIMEOUT_SECONDS = 2


@router.get("/health")
async def health_liveness():
    """Liveness probe: returns 200 if the API process is running."""
    return {"status": "healthy", "service": "api"}


@router.get("/health/ready")
async def health_readiness(request: Request):
    """Readiness probe: checks ledger database connectivity."""
    status = {
        "status": "healthy",
        "services": {
            "api": "up",
            "database": "unknown",
        },
    }

    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        status["services"]["database"] = "down"
        status["status"] = "degraded"
        return status

    try:
        ok = await asyncio.wait_for(
            run_in_threadpool(ping, engine), timeout=DATABASE_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        status["services"]["database"] = "timeout"
        status["status"] = "degraded"
        logger.warning("database_health_timeout", timeout_s=DATABASE_TIMEOUT_SECONDS)
        return status

    status["services"]["database"] = "up" if ok else "down"
    if not ok:
        status["status"] = "degraded"
    return status
