"""
Job API dependencies.

Components are built once in the application lifespan and kept on
app.state; these dependencies hand them to route handlers.

SECURITY: Worker callbacks MUST present the shared webhook token.
"""

import logging
from typing import Optional

from fastapi import Header, Request, status

from mediajobs.files.storage import ArtifactStorage
from mediajobs.integrations.worker.client import verify_webhook_token
from mediajobs.jobs.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised by handlers for errors that are not job errors (auth, files)."""

    def __init__(self, status_code: int, message: str, code: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


def get_orchestrator(request: Request) -> JobOrchestrator:
    """Get the job orchestrator created at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Job service not initialized",
            "SERVICE_UNAVAILABLE",
        )
    return orchestrator


def get_storage(request: Request) -> ArtifactStorage:
    """Get the artifact storage created at startup."""
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Artifact storage not initialized",
            "SERVICE_UNAVAILABLE",
        )
    return storage


def verify_callback_token(
    request: Request,
    x_webhook_token: Optional[str] = Header(None, alias="X-Webhook-Token"),
) -> None:
    """
    Reject worker callbacks without the shared webhook token.

    Raises:
        ApiError: 401 if the token is missing or wrong
    """
    settings = request.app.state.settings
    if not verify_webhook_token(x_webhook_token, settings.worker_webhook_secret):
        logger.warning(
            "Invalid webhook token on worker callback",
            extra={
                "client": request.client.host if request.client else None,
                "token_present": bool(x_webhook_token),
            },
        )
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            "Invalid webhook token",
            "UNAUTHORIZED",
        )
