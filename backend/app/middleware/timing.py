# backend/app/middleware/timing.py
"""
Request timing and correlation middleware.
"""

from collections.abc import Awaitable, Callable
import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import ulid

from ..core.request_context import reset_request_id, set_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 100


class TimingMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with a request id and log slow requests.

    An incoming X-Request-ID is reused so ids line up with the gateway.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(ulid.ULID())
        token = set_request_id(request_id)
        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)

        process_time = (time.time() - start_time) * 1000  # Convert to ms
        response.headers["X-Process-Time"] = f"{process_time:.2f}ms"
        response.headers[REQUEST_ID_HEADER] = request_id

        # Health probes are frequent and not interesting when slow
        if process_time > SLOW_REQUEST_MS and request.url.path != "/api/v1/health":
            logger.warning(
                "slow_request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(process_time, 2),
                    "request_id": request_id,
                },
            )

        return response
