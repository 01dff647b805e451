"""
Health and metrics routes.

/healthz is a liveness check and never touches the database.
/metrics reports job counts by status and process uptime.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from mediajobs import __version__
from mediajobs.api.dependencies import get_orchestrator
from mediajobs.api.schemas.jobs import HealthResponse, MetricsResponse
from mediajobs.jobs.orchestrator import JobOrchestrator

router = APIRouter(tags=["health"])

# Set once at import; the process start reference for uptime
_STARTED_AT = time.monotonic()


@router.get("/healthz", response_model=HealthResponse)
async def healthz():
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
    )


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """Job counts by status and seconds since the process started."""
    return MetricsResponse(
        job_stats=orchestrator.get_stats(),
        uptime_seconds=round(time.monotonic() - _STARTED_AT, 3),
    )
