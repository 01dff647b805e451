"""
Retry policy and backoff calculation for job dispatch.

Dispatch is at-least-once with a fixed attempt budget:
- Each attempt is a single webhook call to the worker
- Transport errors and non-2xx responses count as failed attempts
- Between attempts the loop waits base_delay * 2^(attempt-1)
- Once the budget is spent the job fails; nothing is auto-resubmitted

Backoff formula: min(base_delay * 2^(attempt-1), max_delay) +/- optional jitter
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

# Retry configuration constants
MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 60.0
JITTER_FACTOR = 0.0  # No jitter unless configured


class ErrorCategory(str, Enum):
    """Classification of a failed dispatch attempt, for logging and diagnostics."""
    AUTH_ERROR = "auth_error"  # 401, 403 - worker rejected our token
    RATE_LIMIT = "rate_limit"  # 429
    CLIENT_ERROR = "client_error"  # Other 4xx
    SERVER_ERROR = "server_error"  # 5xx
    TIMEOUT = "timeout"  # Connection/read timeout
    CONNECTION = "connection"  # Network errors
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DispatchRetryPolicy:
    """
    Retry policy configuration.

    Attributes:
        max_attempts: Dispatch attempts before the job is failed
        base_delay_seconds: Delay after the first failed attempt
        max_delay_seconds: Maximum delay cap
        jitter_factor: Random jitter factor (0.25 = +/- 25%), 0 disables
    """
    max_attempts: int = MAX_ATTEMPTS
    base_delay_seconds: float = BASE_DELAY_SECONDS
    max_delay_seconds: float = MAX_DELAY_SECONDS
    jitter_factor: float = JITTER_FACTOR

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")


def categorize_error(status_code: Optional[int]) -> ErrorCategory:
    """
    Categorize an HTTP error response from the worker.

    Transport failures carry no status code and are classified by the
    client from the exception type.

    Args:
        status_code: HTTP status code (if a response was received)

    Returns:
        ErrorCategory for the error
    """
    if status_code is not None:
        if status_code in (401, 403):
            return ErrorCategory.AUTH_ERROR
        if status_code == 429:
            return ErrorCategory.RATE_LIMIT
        if 500 <= status_code < 600:
            return ErrorCategory.SERVER_ERROR
        if 400 <= status_code < 500:
            return ErrorCategory.CLIENT_ERROR

    return ErrorCategory.UNKNOWN


def calculate_backoff(
    attempt: int,
    policy: DispatchRetryPolicy = DispatchRetryPolicy(),
    retry_after: Optional[float] = None,
) -> float:
    """
    Calculate the wait after a failed attempt.

    Formula: min(base * 2^(attempt-1), max_delay), then +/- jitter.
    A worker-supplied Retry-After raises the wait, up to max_delay.

    Args:
        attempt: The attempt that just failed (1-indexed)
        policy: Retry policy configuration
        retry_after: Seconds the worker asked us to wait, if any

    Returns:
        Delay in seconds before the next attempt
    """
    if attempt < 1:
        raise ValueError("attempt is 1-indexed")

    delay = policy.base_delay_seconds * (2 ** (attempt - 1))
    delay = min(delay, policy.max_delay_seconds)

    if policy.jitter_factor:
        jitter_range = delay * policy.jitter_factor
        delay = delay + random.uniform(-jitter_range, jitter_range)

    if retry_after is not None and retry_after > delay:
        delay = min(retry_after, policy.max_delay_seconds)

    return max(delay, 0.0)


def has_attempts_left(attempt: int, policy: DispatchRetryPolicy) -> bool:
    """True if another attempt may follow attempt number `attempt`."""
    return attempt < policy.max_attempts


def log_retry_decision(
    job_id: str,
    attempt: int,
    error_category: ErrorCategory,
    delay_seconds: Optional[float],
    policy: DispatchRetryPolicy,
) -> None:
    """
    Log the outcome of a failed attempt for observability.

    Args:
        job_id: Job identifier
        attempt: Attempt number that failed (1-indexed)
        error_category: Classified error type
        delay_seconds: Wait before the next attempt, None when exhausted
        policy: Retry policy in force
    """
    log_extra = {
        "job_id": job_id,
        "attempt": attempt,
        "max_attempts": policy.max_attempts,
        "error_category": error_category.value,
    }

    if delay_seconds is None:
        logger.warning("job.dispatch_exhausted", extra=log_extra)
    else:
        log_extra["delay_seconds"] = delay_seconds
        logger.info("job.dispatch_retry", extra=log_extra)
