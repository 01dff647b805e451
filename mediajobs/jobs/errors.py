"""
Job orchestration exceptions.

Only these propagate to callers of the orchestrator. Dispatch failures and
duplicate callbacks are absorbed and recorded as job data instead.
"""

from typing import Optional


class JobError(Exception):
    """Base exception for job orchestration errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, code={self.code!r})"


class InvalidJobInputError(JobError):
    """Raised for malformed submissions and malformed worker reports."""

    def __init__(self, message: str, code: str = "INVALID_INPUT"):
        super().__init__(message, code=code)


class JobNotFoundError(JobError):
    """Raised when a job identifier does not exist."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", code="JOB_NOT_FOUND")
        self.job_id = job_id


class JobStoreError(JobError):
    """Raised when the job store cannot complete an operation."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message, code="STORE_ERROR")
        self.operation = operation
