"""
Durable job store.

SQLAlchemy-backed persistence for jobs and their results. Every operation
opens its own short-lived session, so the store can be shared by request
handlers and detached dispatch tasks alike.

Status writes are conditional single-statement updates:

    UPDATE jobs SET status = :target ... WHERE id = :id AND status IN (:sources)

so a job that already reached a terminal state is never moved again, no
matter which path (dispatch loop, callback, watchdog) writes last.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from mediajobs.jobs.errors import JobStoreError
from mediajobs.jobs.models import Job, JobResult, JobStatus
from mediajobs.jobs.states import allowed_sources
from mediajobs.models.base import utcnow

logger = logging.getLogger(__name__)


class JobStoreProtocol(Protocol):
    """Capabilities the orchestrator needs from a job store."""

    def create_job(self, job: Job) -> Job: ...

    def get_job(self, job_id: str) -> Optional[Job]: ...

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_message: Optional[str] = None,
    ) -> bool: ...

    def increment_attempts(self, job_id: str) -> None: ...

    def create_result(self, result: JobResult) -> JobResult: ...

    def get_result_by_job(self, job_id: str) -> Optional[JobResult]: ...

    def get_result_by_file_name(self, file_name: str) -> Optional[JobResult]: ...

    def complete_job(self, job_id: str, result: JobResult) -> bool: ...

    def list_stale_jobs(
        self,
        status: JobStatus,
        older_than: datetime,
        limit: int = 100,
    ) -> list[Job]: ...

    def get_status_counts(self) -> dict[str, int]: ...


class JobStore:
    """
    SQLAlchemy implementation of JobStoreProtocol.

    The session factory must be configured with expire_on_commit=False;
    returned rows are detached and read after their session closes.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_job(self, job: Job) -> Job:
        """
        Insert a new job row.

        Raises:
            JobStoreError: If the insert fails
        """
        try:
            with self._session_factory.begin() as session:
                session.add(job)
            return job
        except SQLAlchemyError as e:
            logger.error(
                "Failed to create job",
                extra={"job_id": job.id, "error": str(e)},
            )
            raise JobStoreError(f"Failed to create job: {e}", operation="create_job") from e

    def get_job(self, job_id: str) -> Optional[Job]:
        """Return the job or None if it does not exist."""
        try:
            with self._session_factory() as session:
                return session.get(Job, job_id)
        except SQLAlchemyError as e:
            raise JobStoreError(f"Failed to get job: {e}", operation="get_job") from e

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Move a job to `status` if the state machine allows it.

        error_message is stored for failed jobs and cleared otherwise.

        Returns:
            True if the row changed, False if the job is missing or its
            current status does not permit the transition.

        Raises:
            JobStoreError: If the update fails
        """
        sources = allowed_sources(status)
        if not sources:
            return False

        values = {
            "status": status,
            "updated_at": utcnow(),
            "error_message": error_message if status == JobStatus.FAILED else None,
        }

        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.status.in_(sources))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise JobStoreError(
                f"Failed to update job status: {e}", operation="update_job_status"
            ) from e

    def increment_attempts(self, job_id: str) -> None:
        """
        Increment the dispatch attempt counter.

        Raises:
            JobStoreError: If the update fails
        """
        try:
            with self._session_factory.begin() as session:
                session.execute(
                    update(Job)
                    .where(Job.id == job_id)
                    .values(attempts=Job.attempts + 1, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise JobStoreError(
                f"Failed to increment job attempts: {e}", operation="increment_attempts"
            ) from e

    def create_result(self, result: JobResult) -> JobResult:
        """
        Insert a result row on its own.

        Raises:
            JobStoreError: If the insert fails (including a second result for the job)
        """
        try:
            with self._session_factory.begin() as session:
                session.add(result)
            return result
        except SQLAlchemyError as e:
            raise JobStoreError(f"Failed to create result: {e}", operation="create_result") from e

    def complete_job(self, job_id: str, result: JobResult) -> bool:
        """
        Record the result and move the job to completed in one transaction.

        Returns:
            True if both writes committed. False if the job could not move to
            completed (already terminal or missing) or a result already
            exists; nothing is written in that case.

        Raises:
            JobStoreError: On any other database failure
        """
        session = self._session_factory()
        try:
            transitioned = session.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.status.in_(allowed_sources(JobStatus.COMPLETED)),
                )
                .values(
                    status=JobStatus.COMPLETED,
                    error_message=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if transitioned.rowcount != 1:
                session.rollback()
                return False

            session.add(result)
            session.flush()
            session.commit()
            return True

        except IntegrityError:
            session.rollback()
            logger.info(
                "Result already recorded for job",
                extra={"job_id": job_id},
            )
            return False
        except (SQLAlchemyError, OverflowError) as e:
            # sqlite3 raises OverflowError for ints beyond 64 bits
            session.rollback()
            raise JobStoreError(f"Failed to complete job: {e}", operation="complete_job") from e
        finally:
            session.close()

    def get_result_by_job(self, job_id: str) -> Optional[JobResult]:
        """Return the result for a job, or None."""
        try:
            with self._session_factory() as session:
                return session.scalars(
                    select(JobResult).where(JobResult.job_id == job_id)
                ).first()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Failed to get result: {e}", operation="get_result_by_job") from e

    def get_result_by_file_name(self, file_name: str) -> Optional[JobResult]:
        """Return the result with this artifact name, or None."""
        try:
            with self._session_factory() as session:
                return session.scalars(
                    select(JobResult).where(JobResult.file_name == file_name)
                ).first()
        except SQLAlchemyError as e:
            raise JobStoreError(
                f"Failed to get result by file name: {e}", operation="get_result_by_file_name"
            ) from e

    def list_stale_jobs(
        self,
        status: JobStatus,
        older_than: datetime,
        limit: int = 100,
    ) -> list[Job]:
        """
        Jobs in `status` whose last update is before `older_than`.

        Oldest first.
        """
        try:
            with self._session_factory() as session:
                return list(
                    session.scalars(
                        select(Job)
                        .where(Job.status == status, Job.updated_at < older_than)
                        .order_by(Job.updated_at.asc())
                        .limit(limit)
                    )
                )
        except SQLAlchemyError as e:
            raise JobStoreError(f"Failed to list stale jobs: {e}", operation="list_stale_jobs") from e

    def get_status_counts(self) -> dict[str, int]:
        """Job counts keyed by status value."""
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(Job.status, func.count(Job.id)).group_by(Job.status)
                ).all()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Failed to get job stats: {e}", operation="get_status_counts") from e

        return {
            (status.value if isinstance(status, JobStatus) else str(status)): count
            for status, count in rows
        }
