"""
API Dependencies module.

Provides shared FastAPI dependencies for route handlers.
"""

from mediajobs.api.dependencies.jobs import (
    ApiError,
    get_orchestrator,
    get_storage,
    verify_callback_token,
)

__all__ = [
    "ApiError",
    "get_orchestrator",
    "get_storage",
    "verify_callback_token",
]
