"""
Artifact download route.

A file is served only when a result with that name exists and its job is
completed; the name must resolve inside the storage directory.
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse

from mediajobs.api.dependencies import ApiError, get_orchestrator, get_storage
from mediajobs.api.schemas.jobs import ErrorResponse
from mediajobs.files.storage import ArtifactStorage
from mediajobs.jobs.models import JobStatus
from mediajobs.jobs.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["downloads"])


@router.get(
    "/download/{file_name}",
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def download_artifact(
    file_name: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    storage: ArtifactStorage = Depends(get_storage),
):
    """Serve a finished job's artifact."""
    result = orchestrator.store.get_result_by_file_name(file_name)
    if result is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "File not found", "FILE_NOT_FOUND")

    job = orchestrator.store.get_job(result.job_id)
    if job is None or job.status != JobStatus.COMPLETED:
        logger.warning(
            "Download refused - job not completed",
            extra={
                "file_name": file_name,
                "job_id": result.job_id,
                "status": job.status.value if job else None,
            },
        )
        raise ApiError(status.HTTP_403_FORBIDDEN, "File not available", "FORBIDDEN")

    path = storage.resolve(file_name)
    if path is None or not path.is_file():
        logger.error(
            "Artifact missing from storage",
            extra={"file_name": file_name, "job_id": result.job_id},
        )
        raise ApiError(status.HTTP_404_NOT_FOUND, "File not found", "FILE_NOT_FOUND")

    logger.info("Serving artifact", extra={"file_name": file_name, "job_id": result.job_id})
    return FileResponse(
        str(path),
        media_type=storage.media_type(file_name),
        filename=file_name,
    )
