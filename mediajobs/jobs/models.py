"""
Job and result models for externally processed media jobs.

Defines:
- Job: one unit of requested work, tracked through its lifecycle
  (queued|processing|completed|failed) with a dispatch attempt counter
- JobResult: the artifact produced by a completed job (at most one per job)
- JobOptions: processing options forwarded to the worker

Status transitions are never written through the ORM attributes directly;
the job store issues conditional updates (see mediajobs.jobs.states).
"""

import enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import (
    Column,
    String,
    Integer,
    Enum,
    Text,
    Index,
    ForeignKey,
    BigInteger,
)

from mediajobs.db_base import Base
from mediajobs.models.base import TimestampMixin, UTCDateTime, generate_uuid, utcnow

DEFAULT_OUTPUT_FORMAT = "mp3"


class JobStatus(str, enum.Enum):
    """Job lifecycle status enumeration."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobOptions(BaseModel):
    """Processing options sent to the worker with the job."""
    start_seconds: Optional[int] = Field(default=None, ge=0)
    duration_seconds: Optional[int] = Field(default=None, gt=0)
    fade_in: bool = False
    fade_out: bool = False
    format: str = DEFAULT_OUTPUT_FORMAT

    @field_validator("format", mode="before")
    @classmethod
    def default_format(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_OUTPUT_FORMAT
        return value


class Job(Base, TimestampMixin):
    """
    A media processing job handed to the external worker.

    Attributes:
        id: Primary key (UUID4), assigned at submission
        source_url: Work input reference forwarded to the worker
        user_id: Optional submitter identity
        status: queued, processing, completed or failed
        attempts: Dispatch attempts made so far (incremented before each attempt)
        dispatch_payload: JSON snapshot of the payload sent to the worker
        error_message: Failure description, set only for failed jobs
    """

    __tablename__ = "jobs"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    source_url = Column(
        Text,
        nullable=False,
        comment="Work input reference"
    )
    user_id = Column(
        String(255),
        nullable=True,
        comment="Optional submitter identity"
    )

    status = Column(
        Enum(JobStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=JobStatus.QUEUED,
        nullable=False,
        comment="Job status: queued, processing, completed, failed"
    )

    attempts = Column(
        Integer,
        default=0,
        nullable=False,
        comment="Dispatch attempts made"
    )

    dispatch_payload = Column(
        Text,
        nullable=True,
        comment="Serialized payload sent to the worker"
    )

    error_message = Column(
        Text,
        nullable=True,
        comment="Error message for failed jobs"
    )

    __table_args__ = (
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_created_at", "created_at"),
        Index("idx_jobs_status_updated_at", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Job("
            f"id={self.id}, "
            f"status={self.status.value if self.status else None}, "
            f"attempts={self.attempts}"
            f")>"
        )


class JobResult(Base):
    """
    Artifact produced by a completed job.

    The unique constraint on job_id guarantees at most one result per job,
    even when duplicate completion reports race each other.
    """

    __tablename__ = "job_results"

    id = Column(Integer, primary_key=True, autoincrement=True)

    job_id = Column(
        String(36),
        ForeignKey("jobs.id"),
        nullable=False,
        unique=True,
        comment="Owning job"
    )

    file_name = Column(
        String(512),
        nullable=False,
        index=True,
        comment="Artifact name used for downloads"
    )
    file_path = Column(
        Text,
        nullable=False,
        comment="Artifact locator as reported by the worker"
    )
    format = Column(
        String(32),
        nullable=False,
        comment="Declared artifact format"
    )
    duration_seconds = Column(Integer, nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    title = Column(String(512), nullable=True)

    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="When the result was recorded"
    )

    def __repr__(self) -> str:
        return f"<JobResult(job_id={self.job_id}, file_name={self.file_name})>"
