"""
Job state machine.

    queued ──► processing ──► completed
       │            │
       └────────────┴───────► failed

completed and failed are terminal. A worker report may also arrive while
the job is still queued (the worker answered before the dispatch loop
recorded processing), so queued may move straight to completed.
"""

from mediajobs.jobs.models import JobStatus

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Target status -> statuses a job may be in for the transition to apply
ALLOWED_SOURCES: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset(),
    JobStatus.PROCESSING: frozenset({JobStatus.QUEUED}),
    JobStatus.COMPLETED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
}


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_sources(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which `target` may be entered."""
    return ALLOWED_SOURCES[target]
