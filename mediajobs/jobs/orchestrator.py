"""
Job orchestrator.

Drives a job through its lifecycle:
- submit(): persist a queued job, then hand it to the worker in the background
- dispatch loop: at-least-once webhook delivery with exponential backoff
- reconcile(): absorb the worker's completion/failure callback idempotently
- get_status(): read-only projection for pollers
- expire_stale_jobs(): fail jobs the worker never called back about

The store is the only shared state. The dispatch loop and a callback may
race on the same job; the store's conditional status update decides, and a
job that is already terminal is never moved again.
"""

import asyncio
import enum
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from mediajobs.integrations.worker.client import DispatchClientProtocol, DispatchResult
from mediajobs.jobs.errors import InvalidJobInputError, JobNotFoundError, JobStoreError
from mediajobs.jobs.models import (
    DEFAULT_OUTPUT_FORMAT,
    Job,
    JobOptions,
    JobResult,
    JobStatus,
)
from mediajobs.jobs.retry import (
    DispatchRetryPolicy,
    ErrorCategory,
    calculate_backoff,
    has_attempts_left,
    log_retry_decision,
)
from mediajobs.jobs.states import TERMINAL_STATUSES, is_terminal
from mediajobs.jobs.store import JobStoreProtocol
from mediajobs.models.base import generate_uuid, utcnow

logger = logging.getLogger(__name__)

POLL_URL_TEMPLATE = "/api/v1/job-status/{job_id}"
DOWNLOAD_URL_TEMPLATE = "/download/{file_name}"
DEFAULT_FAILURE_MESSAGE = "Job failed in worker"

# Column limits for numeric result metadata
MAX_INT32 = 2**31 - 1
MAX_INT64 = 2**63 - 1

SleepFunc = Callable[[float], Awaitable[Any]]


class ReconcileOutcome(str, enum.Enum):
    """What a callback did to the job."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class JobHandle:
    """Returned to the submitter."""
    job_id: str
    status: str
    poll_url: str


@dataclass(frozen=True)
class JobStatusView:
    """Caller-facing view of a job, derived from the store."""
    job_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    attempts: int
    download_url: Optional[str] = None
    error: Optional[str] = None


def validate_source_url(source_url: Any) -> str:
    """
    Check that the source reference is a usable http(s) URL.

    Raises:
        InvalidJobInputError: If empty or malformed
    """
    if not isinstance(source_url, str) or not source_url.strip():
        raise InvalidJobInputError("source_url is required", code="MISSING_SOURCE_URL")

    source_url = source_url.strip()
    parsed = urlparse(source_url)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        raise InvalidJobInputError("Invalid source URL format", code="INVALID_URL")
    return source_url


def coerce_whole_number(value: Any, maximum: int = MAX_INT64) -> Optional[int]:
    """
    Read a non-negative whole number from a loosely typed value.

    Accepts ints, floats and numeric strings (fractions are truncated).
    Returns None for anything else, including booleans, NaN, negatives
    and values above `maximum`.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= maximum else None
    if isinstance(value, float):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None

    if math.isnan(number) or math.isinf(number) or number < 0 or number > maximum:
        return None
    return int(number)


class JobOrchestrator:
    """
    Owns the job state machine.

    Responsibilities:
    - Persist new jobs before any side effect
    - Run one detached dispatch task per job, with bounded retries
    - Reconcile worker callbacks, ignoring duplicates
    - Project job state for pollers
    - Cancel in-flight dispatch work on shutdown
    """

    def __init__(
        self,
        store: JobStoreProtocol,
        dispatch_client: DispatchClientProtocol,
        callback_url: str,
        retry_policy: DispatchRetryPolicy = DispatchRetryPolicy(),
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize job orchestrator.

        Args:
            store: Durable job store
            dispatch_client: Makes single dispatch attempts to the worker
            callback_url: Address the worker must report back to
            retry_policy: Dispatch retry budget and backoff
            sleep: Awaitable used for backoff waits
        """
        if not callback_url:
            raise ValueError("callback_url is required")

        self.store = store
        self.dispatch_client = dispatch_client
        self.callback_url = callback_url
        self.retry_policy = retry_policy
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()
        self._watchdog_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def in_flight(self) -> int:
        """Number of dispatch tasks still running."""
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _build_payload(self, job_id: str, source_url: str, options: JobOptions) -> Dict[str, Any]:
        return {
            "job_id": job_id,
            "source_url": source_url,
            "options": options.model_dump(),
            "callback_url": self.callback_url,
        }

    async def submit(
        self,
        source_url: str,
        options: Union[JobOptions, Dict[str, Any], None] = None,
        user_id: Optional[str] = None,
    ) -> JobHandle:
        """
        Create a job and start dispatching it.

        The job is stored as queued with zero attempts before this returns.
        Dispatch runs in a detached task; this call never waits for the worker.

        Args:
            source_url: Work input reference (http or https URL)
            options: Processing options, defaults applied for missing fields
            user_id: Optional submitter identity

        Returns:
            JobHandle with the job id, queued status and poll URL

        Raises:
            InvalidJobInputError: If the source URL or options are malformed
            JobStoreError: If the job could not be persisted (nothing is dispatched)
        """
        source_url = validate_source_url(source_url)

        if options is None:
            options = JobOptions()
        elif isinstance(options, dict):
            try:
                options = JobOptions(**options)
            except ValidationError as e:
                raise InvalidJobInputError(f"Invalid options: {e}", code="INVALID_OPTIONS") from e

        job_id = generate_uuid()
        payload = self._build_payload(job_id, source_url, options)

        job = Job(
            id=job_id,
            source_url=source_url,
            user_id=user_id,
            status=JobStatus.QUEUED,
            attempts=0,
            dispatch_payload=json.dumps(payload),
        )
        self.store.create_job(job)

        logger.info(
            "job.queued",
            extra={
                "job_id": job_id,
                "source_url": source_url,
                "user_id": user_id,
                "format": options.format,
            },
        )

        self._spawn_dispatch(job_id, payload)

        return JobHandle(
            job_id=job_id,
            status=JobStatus.QUEUED.value,
            poll_url=POLL_URL_TEMPLATE.format(job_id=job_id),
        )

    def _spawn_dispatch(self, job_id: str, payload: Dict[str, Any]) -> None:
        if self._closed:
            logger.warning(
                "Dispatch not started - orchestrator is shutting down",
                extra={"job_id": job_id},
            )
            return

        task = asyncio.get_running_loop().create_task(
            self._run_dispatch(job_id, payload),
            name=f"dispatch-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    async def _run_dispatch(self, job_id: str, payload: Dict[str, Any]) -> None:
        """Task boundary: nothing raised here may reach the submitter."""
        try:
            await self._dispatch_with_retry(job_id, payload)
        except asyncio.CancelledError:
            logger.warning(
                "job.dispatch_abandoned",
                extra={"job_id": job_id},
            )
            raise
        except Exception as e:
            logger.error(
                "Unexpected error dispatching job",
                extra={"job_id": job_id, "error": str(e)},
                exc_info=True,
            )

    async def _attempt(self, payload: Dict[str, Any]) -> DispatchResult:
        try:
            return await self.dispatch_client.send(payload)
        except Exception as e:
            return DispatchResult(
                success=False,
                error_category=ErrorCategory.UNKNOWN,
                error_message=f"Unexpected dispatch error: {str(e)[:500]}",
            )

    def _still_queued(self, job_id: str) -> bool:
        """Re-read the job before a retry; stop if something else moved it."""
        try:
            job = self.store.get_job(job_id)
        except JobStoreError as e:
            logger.error(
                "Failed to re-read job before retry",
                extra={"job_id": job_id, "error": str(e)},
            )
            return True

        if job is None or job.status != JobStatus.QUEUED:
            logger.info(
                "Retry skipped - job no longer queued",
                extra={
                    "job_id": job_id,
                    "status": job.status.value if job else None,
                },
            )
            return False
        return True

    async def _dispatch_with_retry(self, job_id: str, payload: Dict[str, Any]) -> None:
        """
        Deliver the payload to the worker, retrying with backoff.

        Stops at the first accepted attempt (job -> processing) or after the
        retry budget is spent (job -> failed).
        """
        policy = self.retry_policy
        last_error = "unknown error"

        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1 and not self._still_queued(job_id):
                return

            try:
                self.store.increment_attempts(job_id)
            except JobStoreError as e:
                logger.error(
                    "Failed to increment job attempts",
                    extra={"job_id": job_id, "attempt": attempt, "error": str(e)},
                )

            logger.info(
                "Dispatching job to worker",
                extra={"job_id": job_id, "attempt": attempt},
            )
            result = await self._attempt(payload)

            if result.success:
                self._mark_processing(job_id, attempt)
                return

            last_error = result.error_message or "unknown error"
            error_category = result.error_category or ErrorCategory.UNKNOWN

            if has_attempts_left(attempt, policy):
                delay = calculate_backoff(attempt, policy, retry_after=result.retry_after_seconds)
                log_retry_decision(job_id, attempt, error_category, delay, policy)
                await self._sleep(delay)
            else:
                log_retry_decision(job_id, attempt, error_category, None, policy)

        self._mark_dispatch_failed(
            job_id,
            f"Failed to dispatch job after {policy.max_attempts} attempts: {last_error}",
        )

    def _mark_processing(self, job_id: str, attempt: int) -> None:
        try:
            moved = self.store.update_job_status(job_id, JobStatus.PROCESSING)
        except JobStoreError as e:
            # The worker has the job; dispatching again would duplicate work
            logger.error(
                "Failed to update job status to processing",
                extra={"job_id": job_id, "error": str(e)},
            )
            return

        if moved:
            logger.info("job.dispatched", extra={"job_id": job_id, "attempt": attempt})
        else:
            logger.info(
                "Job accepted by worker after leaving queued state",
                extra={"job_id": job_id, "attempt": attempt},
            )

    def _mark_dispatch_failed(self, job_id: str, error_message: str) -> None:
        try:
            moved = self.store.update_job_status(job_id, JobStatus.FAILED, error_message)
        except JobStoreError as e:
            logger.error(
                "Failed to update job status to failed",
                extra={"job_id": job_id, "error": str(e)},
            )
            return

        if moved:
            logger.error(
                "job.failed",
                extra={"job_id": job_id, "error_message": error_message},
            )
        else:
            logger.info(
                "Dispatch failure not recorded - job already left queued state",
                extra={"job_id": job_id},
            )

    # ------------------------------------------------------------------
    # Status projection
    # ------------------------------------------------------------------

    def get_status(self, job_id: str) -> JobStatusView:
        """
        Read-only view of a job for polling.

        download_url is set only for completed jobs with a recorded result.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStoreError: If the job cannot be read
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        download_url = None
        if job.status == JobStatus.COMPLETED:
            try:
                result = self.store.get_result_by_job(job_id)
            except JobStoreError as e:
                logger.error(
                    "Failed to get result for completed job",
                    extra={"job_id": job_id, "error": str(e)},
                )
                result = None
            if result is not None:
                download_url = DOWNLOAD_URL_TEMPLATE.format(file_name=result.file_name)

        return JobStatusView(
            job_id=job.id,
            status=job.status.value,
            created_at=job.created_at,
            updated_at=job.updated_at,
            attempts=job.attempts,
            download_url=download_url,
            error=job.error_message,
        )

    def get_stats(self) -> dict[str, int]:
        """Job counts by status."""
        return self.store.get_status_counts()

    # ------------------------------------------------------------------
    # Callback reconciliation
    # ------------------------------------------------------------------

    def reconcile(
        self,
        job_id: str,
        status: Union[str, JobStatus],
        file_path: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReconcileOutcome:
        """
        Apply a worker's completion or failure report.

        Input is validated before the job is read; a malformed report never
        touches state. Reports for jobs that are already completed or failed
        are duplicates and succeed without changes.

        Args:
            job_id: Job the report is about
            status: "completed" or "failed"
            file_path: Artifact locator, required for completed
            metadata: Free-form details (error, duration, size, title, format)

        Returns:
            ReconcileOutcome.APPLIED or ReconcileOutcome.DUPLICATE

        Raises:
            InvalidJobInputError: Unknown status, missing file_path, bad metadata
            JobNotFoundError: If the job does not exist
            JobStoreError: If the store cannot be read or written
        """
        if not job_id:
            raise InvalidJobInputError("job_id is required", code="MISSING_JOB_ID")

        try:
            reported = JobStatus(status)
        except ValueError:
            reported = None
        if reported not in TERMINAL_STATUSES:
            raise InvalidJobInputError(
                f"Unknown callback status: {status}", code="INVALID_STATUS"
            )

        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            raise InvalidJobInputError("metadata must be an object", code="INVALID_METADATA")

        if reported == JobStatus.COMPLETED:
            if not isinstance(file_path, str) or not file_path.strip():
                raise InvalidJobInputError(
                    "file_path is required for completed status", code="MISSING_FILE_PATH"
                )
            file_path = file_path.strip()

        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        logger.info(
            "Processing worker callback",
            extra={"job_id": job_id, "status": reported.value, "current_status": job.status.value},
        )

        if is_terminal(job.status):
            logger.info(
                "job.callback_duplicate",
                extra={"job_id": job_id, "status": job.status.value, "reported": reported.value},
            )
            return ReconcileOutcome.DUPLICATE

        if reported == JobStatus.COMPLETED:
            return self._handle_completed(job, file_path, metadata)
        return self._handle_failed(job, metadata)

    def _handle_completed(
        self,
        job: Job,
        file_path: str,
        metadata: Dict[str, Any],
    ) -> ReconcileOutcome:
        result = self._build_result(job, file_path, metadata)

        if not self.store.complete_job(job.id, result):
            logger.info(
                "job.callback_duplicate",
                extra={"job_id": job.id, "reported": JobStatus.COMPLETED.value},
            )
            return ReconcileOutcome.DUPLICATE

        logger.info(
            "job.completed",
            extra={
                "job_id": job.id,
                "file_path": file_path,
                "format": result.format,
                "duration_seconds": result.duration_seconds,
            },
        )
        return ReconcileOutcome.APPLIED

    def _handle_failed(self, job: Job, metadata: Dict[str, Any]) -> ReconcileOutcome:
        error_message = metadata.get("error")
        if not isinstance(error_message, str) or not error_message.strip():
            error_message = DEFAULT_FAILURE_MESSAGE

        if not self.store.update_job_status(job.id, JobStatus.FAILED, error_message):
            logger.info(
                "job.callback_duplicate",
                extra={"job_id": job.id, "reported": JobStatus.FAILED.value},
            )
            return ReconcileOutcome.DUPLICATE

        logger.error("job.failed", extra={"job_id": job.id, "error_message": error_message})
        return ReconcileOutcome.APPLIED

    def _build_result(self, job: Job, file_path: str, metadata: Dict[str, Any]) -> JobResult:
        file_name = PurePosixPath(file_path.replace("\\", "/")).name or file_path

        duration = self._read_number(job, metadata, "duration", MAX_INT32)
        size_bytes = self._read_number(job, metadata, "size", MAX_INT64)
        title = metadata.get("title")

        return JobResult(
            job_id=job.id,
            file_name=file_name,
            file_path=file_path,
            format=self._resolve_format(job, file_name, metadata),
            duration_seconds=duration,
            size_bytes=size_bytes,
            title=title[:512] if isinstance(title, str) and title else None,
            created_at=utcnow(),
        )

    @staticmethod
    def _read_number(job: Job, metadata: Dict[str, Any], key: str, maximum: int) -> Optional[int]:
        raw = metadata.get(key)
        value = coerce_whole_number(raw, maximum=maximum)
        if value is None and raw is not None:
            logger.warning(
                f"Ignoring invalid {key} in callback metadata",
                extra={"job_id": job.id, key: repr(raw)},
            )
        return value

    @staticmethod
    def _resolve_format(job: Job, file_name: str, metadata: Dict[str, Any]) -> str:
        """metadata format, then file extension, then the requested format."""
        declared = metadata.get("format")
        if isinstance(declared, str) and declared.strip():
            return declared.strip().lower()[:32]

        suffix = PurePosixPath(file_name).suffix.lstrip(".")
        if suffix:
            return suffix.lower()[:32]

        try:
            requested = json.loads(job.dispatch_payload or "{}").get("options", {}).get("format")
        except (ValueError, AttributeError):
            requested = None
        return requested or DEFAULT_OUTPUT_FORMAT

    # ------------------------------------------------------------------
    # Stuck-job watchdog
    # ------------------------------------------------------------------

    def expire_stale_jobs(self, max_age_seconds: float, limit: int = 100) -> int:
        """
        Fail processing jobs with no update for longer than max_age_seconds.

        A callback that lands first wins; such jobs are skipped.

        Returns:
            Number of jobs moved to failed
        """
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        stale = self.store.list_stale_jobs(JobStatus.PROCESSING, cutoff, limit=limit)

        expired = 0
        message = f"Timed out waiting for worker callback after {int(max_age_seconds)}s"
        for job in stale:
            if self.store.update_job_status(job.id, JobStatus.FAILED, message):
                expired += 1
                logger.warning(
                    "job.expired",
                    extra={"job_id": job.id, "max_age_seconds": max_age_seconds},
                )
        return expired

    async def run_watchdog(self, interval_seconds: float, max_age_seconds: float) -> None:
        """Periodically expire stale processing jobs until cancelled."""
        while True:
            await self._sleep(interval_seconds)
            try:
                self.expire_stale_jobs(max_age_seconds)
            except JobStoreError as e:
                logger.error("Watchdog sweep failed", extra={"error": str(e)})

    def start_watchdog(self, interval_seconds: float, max_age_seconds: float) -> None:
        """Start the watchdog task on the running loop."""
        if self._watchdog_task is not None and not self._watchdog_task.done():
            return
        self._watchdog_task = asyncio.get_running_loop().create_task(
            self.run_watchdog(interval_seconds, max_age_seconds),
            name="job-watchdog",
        )
        logger.info(
            "Job watchdog started",
            extra={"interval_seconds": interval_seconds, "max_age_seconds": max_age_seconds},
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until every in-flight dispatch task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout_seconds: float = 30.0) -> None:
        """
        Cancel in-flight dispatch tasks and the watchdog.

        Cancelled jobs keep their current status; their outcome is unknown
        and left for an operator.
        """
        self._closed = True

        pending = list(self._tasks)
        if self._watchdog_task is not None:
            pending.append(self._watchdog_task)

        for task in pending:
            task.cancel()

        if pending:
            logger.info("Cancelling in-flight dispatch tasks", extra={"count": len(pending)})
            await asyncio.wait(pending, timeout=timeout_seconds)

        self._watchdog_task = None
