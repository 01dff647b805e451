"""Job orchestration: state machine, dispatch retry and callback reconciliation."""

from mediajobs.jobs.models import (
    Job,
    JobOptions,
    JobResult,
    JobStatus,
)
from mediajobs.jobs.errors import (
    JobError,
    InvalidJobInputError,
    JobNotFoundError,
    JobStoreError,
)
from mediajobs.jobs.retry import DispatchRetryPolicy, calculate_backoff
from mediajobs.jobs.store import JobStore, JobStoreProtocol

__all__ = [
    "Job",
    "JobOptions",
    "JobResult",
    "JobStatus",
    "JobError",
    "InvalidJobInputError",
    "JobNotFoundError",
    "JobStoreError",
    "DispatchRetryPolicy",
    "calculate_backoff",
    "JobStore",
    "JobStoreProtocol",
]
