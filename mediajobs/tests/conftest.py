"""
Root test configuration and fixtures.

Provides database, store and dispatch fixtures shared by all tests.
The job store opens its own sessions, so each test gets a fresh
in-memory SQLite engine instead of a rolled-back transaction.
"""

import os
from typing import Any, Dict, Generator, List, Optional, Union
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from mediajobs.database.session import create_db_engine, init_db
from mediajobs.db_base import Base
from mediajobs.integrations.worker.client import DispatchResult
from mediajobs.jobs.models import Job, JobStatus
from mediajobs.jobs.orchestrator import JobOrchestrator
from mediajobs.jobs.retry import DispatchRetryPolicy, ErrorCategory
from mediajobs.jobs.store import JobStore

# Set test environment
os.environ.setdefault("ENV", "test")

TEST_CALLBACK_URL = "http://backend:8080/api/v1/worker-callback"


class FakeDispatchClient:
    """
    Scripted stand-in for the worker webhook client.

    Each send() consumes the next scripted outcome; once the script runs out
    every attempt succeeds. An exception in the script is raised from send().
    """

    def __init__(self, outcomes: Optional[List[Union[DispatchResult, Exception]]] = None):
        self.outcomes = list(outcomes or [])
        self.payloads: List[Dict[str, Any]] = []

    async def send(self, payload: Dict[str, Any]) -> DispatchResult:
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0) if self.outcomes else DispatchResult(success=True, status_code=200)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def failed_attempt():
    """Factory for a failed dispatch attempt (worker answered 503)."""
    def _make(message: str = "Webhook returned non-2xx status: 503") -> DispatchResult:
        return DispatchResult(
            success=False,
            status_code=503,
            error_category=ErrorCategory.SERVER_ERROR,
            error_message=message,
        )
    return _make


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """SQLite in-memory engine with all tables created."""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=db_engine,
    )


@pytest.fixture
def job_store(session_factory) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture
def make_job(job_store):
    """
    Factory fixture that inserts a job directly into the store.

    Usage:
        job = make_job(status=JobStatus.PROCESSING)
    """
    def _make(
        status: JobStatus = JobStatus.QUEUED,
        source_url: str = "https://example.com/watch?v=abc",
        **kwargs,
    ) -> Job:
        kwargs.setdefault("attempts", 0)
        job = Job(source_url=source_url, status=status, **kwargs)
        return job_store.create_job(job)
    return _make


@pytest.fixture
def fake_dispatch_client() -> FakeDispatchClient:
    return FakeDispatchClient()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    """Records backoff waits without sleeping."""
    return AsyncMock(return_value=None)


@pytest.fixture
def orchestrator(job_store, fake_dispatch_client, fake_sleep) -> JobOrchestrator:
    return JobOrchestrator(
        store=job_store,
        dispatch_client=fake_dispatch_client,
        callback_url=TEST_CALLBACK_URL,
        retry_policy=DispatchRetryPolicy(max_attempts=3, base_delay_seconds=1.0),
        sleep=fake_sleep,
    )


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: mark test as exercising the HTTP app")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
