"""
External worker integration.

The worker receives dispatch payloads over an HTTP webhook and later
reports the outcome to the callback endpoint.
"""

from mediajobs.integrations.worker.client import (
    DispatchResult,
    WorkerWebhookClient,
    verify_webhook_token,
)
from mediajobs.integrations.worker.exceptions import (
    WorkerError,
    WorkerAuthenticationError,
    WorkerRateLimitError,
    WorkerConnectionError,
)

__all__ = [
    # Client
    "DispatchResult",
    "WorkerWebhookClient",
    "verify_webhook_token",
    # Exceptions
    "WorkerError",
    "WorkerAuthenticationError",
    "WorkerRateLimitError",
    "WorkerConnectionError",
]
