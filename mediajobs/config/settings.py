"""
Process configuration loaded from environment variables.

Every value has a default suitable for local development, so the service
starts with no environment set. Production deployments override through
the environment.

Usage:
    from mediajobs.config.settings import get_settings

    settings = get_settings()
    client = WorkerWebhookClient(webhook_url=settings.worker_webhook_url, ...)
"""

import logging
import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./data/mediajobs.db"
DEFAULT_STORAGE_PATH = "./storage"
DEFAULT_WORKER_WEBHOOK_URL = "http://worker:5678/webhook/mediajobs"
DEFAULT_CALLBACK_URL = "http://backend:8080/api/v1/worker-callback"
DEFAULT_WEBHOOK_SECRET = "change-me"
DEFAULT_CORS_ORIGINS = "http://localhost:3000"


def _get_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(
            "Invalid integer in environment, using default",
            extra={"variable": name, "value": raw, "default": default},
        )
        return default
    return _at_least(name, value, default, minimum)


def _get_float(name: str, default: float, minimum: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
        if math.isnan(value):
            raise ValueError(raw)
    except ValueError:
        logger.warning(
            "Invalid number in environment, using default",
            extra={"variable": name, "value": raw, "default": default},
        )
        return default
    return _at_least(name, value, default, minimum)


def _at_least(name: str, value, default, minimum):
    if minimum is not None and value < minimum:
        logger.warning(
            "Out of range value in environment, using default",
            extra={"variable": name, "value": value, "minimum": minimum, "default": default},
        )
        return default
    return value


def _get_list(name: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(name) or default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def normalize_database_url(database_url: str) -> str:
    """Convert postgres:// URLs (Render/Heroku style) to postgresql://."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings for the backend.

    Attributes:
        database_url: SQLAlchemy database URL
        storage_path: Directory holding finished artifacts for download
        worker_webhook_url: Endpoint that receives dispatch payloads
        worker_webhook_secret: Shared token for dispatch and callbacks
        callback_url: Address the worker must call back on completion
        dispatch_max_attempts: Dispatch retry budget per job
        dispatch_base_delay_seconds: Backoff base delay
        dispatch_timeout_seconds: Timeout for a single dispatch attempt
        processing_timeout_seconds: Age after which a processing job is expired (0 disables)
        watchdog_interval_seconds: How often stale processing jobs are swept
        cors_origins: Origins allowed to call the API from a browser
        log_level: Root log level name
        port: HTTP port
        env: Deployment environment name
    """
    database_url: str = DEFAULT_DATABASE_URL
    storage_path: str = DEFAULT_STORAGE_PATH
    worker_webhook_url: str = DEFAULT_WORKER_WEBHOOK_URL
    worker_webhook_secret: str = DEFAULT_WEBHOOK_SECRET
    callback_url: str = DEFAULT_CALLBACK_URL
    dispatch_max_attempts: int = 3
    dispatch_base_delay_seconds: float = 1.0
    dispatch_timeout_seconds: float = 30.0
    processing_timeout_seconds: int = 3600
    watchdog_interval_seconds: float = 60.0
    cors_origins: Tuple[str, ...] = (DEFAULT_CORS_ORIGINS,)
    log_level: str = "INFO"
    port: int = 8080
    env: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        secret = os.getenv("WORKER_WEBHOOK_SECRET") or DEFAULT_WEBHOOK_SECRET
        if secret == DEFAULT_WEBHOOK_SECRET:
            logger.warning(
                "WORKER_WEBHOOK_SECRET not set - using insecure default token"
            )

        return cls(
            database_url=normalize_database_url(
                os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
            ),
            storage_path=os.getenv("STORAGE_PATH") or DEFAULT_STORAGE_PATH,
            worker_webhook_url=os.getenv("WORKER_WEBHOOK_URL") or DEFAULT_WORKER_WEBHOOK_URL,
            worker_webhook_secret=secret,
            callback_url=os.getenv("CALLBACK_URL") or DEFAULT_CALLBACK_URL,
            dispatch_max_attempts=_get_int("DISPATCH_MAX_ATTEMPTS", 3, minimum=1),
            dispatch_base_delay_seconds=_get_float("DISPATCH_BASE_DELAY_SECONDS", 1.0, minimum=0),
            dispatch_timeout_seconds=_get_float("DISPATCH_TIMEOUT_SECONDS", 30.0, minimum=0.001),
            processing_timeout_seconds=_get_int("PROCESSING_TIMEOUT_SECONDS", 3600, minimum=0),
            watchdog_interval_seconds=_get_float("WATCHDOG_INTERVAL_SECONDS", 60.0, minimum=0.001),
            cors_origins=_get_list("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            port=_get_int("PORT", 8080),
            env=os.getenv("ENV"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    return Settings.from_env()
