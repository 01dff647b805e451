"""
Worker webhook exceptions for error handling.
"""

from typing import Optional


class WorkerError(Exception):
    """Base exception for worker webhook errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


class WorkerAuthenticationError(WorkerError):
    """Raised when the worker rejects the webhook token (401/403)."""

    def __init__(
        self,
        message: str = "Worker rejected webhook token",
        status_code: int = 401,
        **kwargs,
    ):
        super().__init__(message, status_code=status_code, **kwargs)


class WorkerRateLimitError(WorkerError):
    """Raised when the worker asks us to slow down (429)."""

    def __init__(
        self,
        message: str = "Worker rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class WorkerConnectionError(WorkerError):
    """Raised when the worker cannot be reached or the request times out."""

    def __init__(
        self,
        message: str = "Connection error - unable to reach worker",
        timeout: bool = False,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.timeout = timeout
