"""
Job API routes.

- POST /api/v1/jobs: submit a job (202, dispatch continues in the background)
- GET /api/v1/job-status/{job_id}: poll a job
- POST /api/v1/worker-callback: worker reports completion or failure

Job errors raised by the orchestrator are turned into {"error", "code"}
bodies by the application's exception handlers.
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, status

from mediajobs.api.dependencies import get_orchestrator, verify_callback_token
from mediajobs.api.schemas.jobs import (
    CallbackRequest,
    CallbackResponse,
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    JobStatusResponse,
)
from mediajobs.jobs.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["jobs"])


@router.post(
    "/jobs",
    response_model=CreateJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def create_job(
    body: CreateJobRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Submit a job.

    The job is stored as queued before the response is sent. Poll the
    returned poll_url for progress.
    """
    handle = await orchestrator.submit(
        source_url=body.source_url,
        options=body.options,
        user_id=body.user_id,
    )
    return CreateJobResponse(
        job_id=handle.job_id,
        status=handle.status,
        poll_url=handle.poll_url,
    )


@router.get(
    "/job-status/{job_id}",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_job_status(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Get the current state of a job."""
    view = orchestrator.get_status(job_id)
    return JobStatusResponse(**asdict(view))


@router.post(
    "/worker-callback",
    response_model=CallbackResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    dependencies=[Depends(verify_callback_token)],
)
async def worker_callback(
    body: CallbackRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Receive a completion or failure report from the worker.

    Repeated reports for a job that already finished are acknowledged
    without changing it.
    """
    outcome = orchestrator.reconcile(
        job_id=body.job_id,
        status=body.status,
        file_path=body.file_path,
        metadata=body.metadata,
    )
    return CallbackResponse(status="ok", outcome=outcome.value)
