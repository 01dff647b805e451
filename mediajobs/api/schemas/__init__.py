"""
API schemas package.

Contains Pydantic models for request/response validation.
"""

from mediajobs.api.schemas.jobs import (
    CallbackRequest,
    CallbackResponse,
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    HealthResponse,
    JobStatusResponse,
    MetricsResponse,
)

__all__ = [
    "CallbackRequest",
    "CallbackResponse",
    "CreateJobRequest",
    "CreateJobResponse",
    "ErrorResponse",
    "HealthResponse",
    "JobStatusResponse",
    "MetricsResponse",
]
