"""
FastAPI application entry point for the mediajobs backend.

Accepts media processing jobs, hands them to the external worker over a
webhook, and reconciles the worker's callbacks into durable job state.

Run:
    python main.py             # serve
    python main.py --migrate   # create database tables and exit
"""

import argparse
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mediajobs import __version__
from mediajobs.api.dependencies import ApiError
from mediajobs.api.middleware import RequestLoggingMiddleware
from mediajobs.api.routes import downloads, health, jobs
from mediajobs.config.settings import get_settings
from mediajobs.database.session import dispose_engine, get_session_factory, init_db
from mediajobs.files.storage import ArtifactStorage
from mediajobs.integrations.worker.client import WorkerWebhookClient
from mediajobs.jobs.errors import (
    InvalidJobInputError,
    JobError,
    JobNotFoundError,
    JobStoreError,
)
from mediajobs.jobs.orchestrator import JobOrchestrator
from mediajobs.jobs.retry import DispatchRetryPolicy
from mediajobs.jobs.store import JobStore

# Configure structured logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    logger.info("Starting mediajobs API", extra={"version": __version__, "env": settings.env})

    init_db()

    storage = ArtifactStorage(settings.storage_path)
    storage.ensure_directory()

    client = WorkerWebhookClient(
        webhook_url=settings.worker_webhook_url,
        secret=settings.worker_webhook_secret,
        timeout=settings.dispatch_timeout_seconds,
    )
    orchestrator = JobOrchestrator(
        store=JobStore(get_session_factory()),
        dispatch_client=client,
        callback_url=settings.callback_url,
        retry_policy=DispatchRetryPolicy(
            max_attempts=settings.dispatch_max_attempts,
            base_delay_seconds=settings.dispatch_base_delay_seconds,
        ),
    )

    if settings.processing_timeout_seconds > 0:
        orchestrator.start_watchdog(
            interval_seconds=settings.watchdog_interval_seconds,
            max_age_seconds=settings.processing_timeout_seconds,
        )
    else:
        logger.warning("Processing watchdog disabled (PROCESSING_TIMEOUT_SECONDS=0)")

    app.state.settings = settings
    app.state.storage = storage
    app.state.orchestrator = orchestrator

    yield

    # Shutdown
    logger.info("Shutting down mediajobs API", extra={"in_flight": orchestrator.in_flight})
    await orchestrator.shutdown()
    await client.close()
    dispose_engine()


# Create FastAPI app
app = FastAPI(
    title="mediajobs API",
    description="Asynchronous media job orchestration with an external worker",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware (configure CORS_ORIGINS for your frontend domains)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
    max_age=300,
)

# Added last so it runs outermost and sees every response, preflights included
app.add_middleware(RequestLoggingMiddleware)

app.include_router(health.router)
app.include_router(jobs.router)
app.include_router(downloads.router)


def _error_body(message: str, code: str) -> dict:
    return {"error": message, "code": code}


@app.exception_handler(JobError)
async def job_error_handler(request: Request, exc: JobError):
    """Map orchestrator errors to HTTP responses."""
    if isinstance(exc, InvalidJobInputError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, JobNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, JobStoreError):
        logger.error(
            "Job store failure",
            extra={
                "operation": exc.operation,
                "error": exc.message,
                "path": request.url.path,
            },
        )
        message = "Job store unavailable"
    else:
        message = exc.message

    return JSONResponse(
        status_code=status_code,
        content=_error_body(message, exc.code or "JOB_ERROR"),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.code),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 with the first problem."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"

    logger.info(
        "Rejected invalid request",
        extra={"path": request.url.path, "error_count": len(errors)},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(message, "INVALID_INPUT"),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", "INTERNAL_ERROR")
    )


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="mediajobs backend")
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Create database tables and exit",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    import uvicorn

    args = _parse_args()
    settings = get_settings()

    if args.migrate:
        init_db()
        logger.info("Migrations completed")
    else:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.port,
            reload=settings.env == "development"
        )
