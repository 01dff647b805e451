"""
Pydantic schemas for the job API.

Covers job submission, status polling, worker callbacks and the
service endpoints (health, metrics).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from mediajobs.jobs.models import JobOptions


class CreateJobRequest(BaseModel):
    """Request body for POST /api/v1/jobs."""
    source_url: str = Field(
        ...,
        description="Media source to process (http or https URL)",
        min_length=1,
        max_length=2048,
        examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ"],
    )
    user_id: Optional[str] = Field(
        None,
        description="Submitter identity, stored with the job",
        max_length=255,
    )
    options: Optional[JobOptions] = Field(
        None,
        description="Processing options; defaults apply to missing fields",
    )


class CreateJobResponse(BaseModel):
    """Response for an accepted job."""
    job_id: str
    status: str
    poll_url: str


class JobStatusResponse(BaseModel):
    """Current state of a job."""
    job_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    attempts: int
    download_url: Optional[str] = None
    error: Optional[str] = None


class CallbackRequest(BaseModel):
    """Completion or failure report sent by the worker."""
    job_id: str = Field(..., min_length=1, max_length=255)
    status: str = Field(
        ...,
        description="completed or failed",
        examples=["completed"],
    )
    file_path: Optional[str] = Field(
        None,
        description="Artifact locator, required when status is completed",
        max_length=1024,
    )
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        description="Free-form details: error, duration, size, title, format",
    )


class CallbackResponse(BaseModel):
    """Acknowledgement returned to the worker."""
    status: str = "ok"
    outcome: str


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint."""
    error: str
    code: str


class HealthResponse(BaseModel):
    """Liveness check response."""
    status: str = "healthy"
    timestamp: datetime
    version: str


class MetricsResponse(BaseModel):
    """Job counts and process uptime."""
    job_stats: Dict[str, int]
    uptime_seconds: float
