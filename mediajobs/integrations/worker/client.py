"""
Webhook client for handing jobs to the external worker.

One call to send() is one dispatch attempt: a single POST with a bounded
timeout and no internal retry. The orchestrator owns the retry policy.

SECURITY: The webhook secret must never be logged.
"""

import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from mediajobs.integrations.worker.exceptions import (
    WorkerError,
    WorkerAuthenticationError,
    WorkerRateLimitError,
    WorkerConnectionError,
)
from mediajobs.jobs.retry import ErrorCategory, categorize_error

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0


@dataclass
class DispatchResult:
    """
    Outcome of a single dispatch attempt.

    Attributes:
        success: Whether the worker accepted the job (2xx)
        status_code: HTTP status code, if a response was received
        error_category: If failed, the error classification
        error_message: Human-readable error message
        retry_after_seconds: Wait requested by the worker (429 Retry-After)
    """
    success: bool
    status_code: Optional[int] = None
    error_category: Optional[ErrorCategory] = None
    error_message: Optional[str] = None
    retry_after_seconds: Optional[float] = None


class DispatchClientProtocol(Protocol):
    """Anything that can make one dispatch attempt."""

    async def send(self, payload: Dict[str, Any]) -> DispatchResult: ...


def verify_webhook_token(token: Optional[str], secret: str) -> bool:
    """Constant-time comparison of a presented token with the shared secret."""
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


class WorkerWebhookClient:
    """
    Async client for the worker's job webhook.

    Requests carry the shared secret in X-Webhook-Token and the job id in
    X-Request-ID for tracing on the worker side.
    """

    def __init__(
        self,
        webhook_url: str,
        secret: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ):
        """
        Initialize worker webhook client.

        Args:
            webhook_url: Worker endpoint receiving dispatch payloads
            secret: Shared webhook token
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
        """
        if not webhook_url:
            raise ValueError("Worker webhook URL is required")

        self.webhook_url = webhook_url
        self._secret = secret
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(connect_timeout, timeout)),
            headers={
                "Content-Type": "application/json",
                "X-Webhook-Token": secret,
            },
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "WorkerWebhookClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _post(self, payload: Dict[str, Any]) -> int:
        """
        POST the payload to the worker.

        Returns:
            HTTP status code of a 2xx response

        Raises:
            WorkerError: On non-2xx responses or transport errors
        """
        body = json.dumps(payload, default=str)
        headers = {}
        job_id = payload.get("job_id")
        if isinstance(job_id, str):
            headers["X-Request-ID"] = job_id

        logger.info(
            "Sending webhook to worker",
            extra={"url": self.webhook_url, "job_id": job_id, "payload_size": len(body)},
        )

        try:
            response = await self._client.post(
                self.webhook_url,
                content=body,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise WorkerConnectionError(f"Request timeout: {e}", timeout=True)
        except httpx.RequestError as e:
            raise WorkerConnectionError(f"Connection error: {e}")

        if response.status_code in (401, 403):
            raise WorkerAuthenticationError(status_code=response.status_code)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise WorkerRateLimitError(
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )

        if response.status_code < 200 or response.status_code >= 300:
            raise WorkerError(
                f"Webhook returned non-2xx status: {response.status_code}",
                status_code=response.status_code,
            )

        return response.status_code

    @staticmethod
    def _classify_error(error: WorkerError) -> ErrorCategory:
        """Classify a failed attempt for logging and diagnostics."""
        if isinstance(error, WorkerConnectionError):
            return ErrorCategory.TIMEOUT if error.timeout else ErrorCategory.CONNECTION
        return categorize_error(error.status_code)

    async def send(self, payload: Dict[str, Any]) -> DispatchResult:
        """
        Make one dispatch attempt.

        Never raises for transport or HTTP failures; those are reported in
        the returned DispatchResult.

        Args:
            payload: Dispatch payload (job_id, source_url, options, callback_url)

        Returns:
            DispatchResult describing the attempt
        """
        try:
            status_code = await self._post(payload)
        except WorkerError as e:
            error_category = self._classify_error(e)
            logger.error(
                "Failed to send webhook to worker",
                extra={
                    "job_id": payload.get("job_id"),
                    "status_code": e.status_code,
                    "error": e.message,
                    "error_category": error_category.value,
                },
            )
            return DispatchResult(
                success=False,
                status_code=e.status_code,
                error_category=error_category,
                error_message=e.message,
                retry_after_seconds=getattr(e, "retry_after", None),
            )

        logger.info(
            "Webhook sent successfully",
            extra={"job_id": payload.get("job_id"), "status_code": status_code},
        )
        return DispatchResult(success=True, status_code=status_code)
