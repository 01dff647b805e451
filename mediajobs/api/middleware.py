"""
HTTP request logging middleware.

Emits one `http.request` record per request with method, path, status,
duration, response size, client address and user agent. A request id is
taken from X-Request-ID (or generated) and echoed back on the response.
"""

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request once it has been answered."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            # The global handler turns this into a 500 further out
            self._log(request, request_id, start, status_code=500, size=None)
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        self._log(
            request,
            request_id,
            start,
            status_code=response.status_code,
            size=response.headers.get("content-length"),
        )
        return response

    @staticmethod
    def _log(request: Request, request_id: str, start: float, status_code: int, size) -> None:
        logger.info(
            "http.request",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                "bytes": int(size) if size and size.isdigit() else None,
                "remote_addr": request.client.host if request.client else None,
                "user_agent": request.headers.get("user-agent"),
            },
        )
