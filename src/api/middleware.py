"""Request context middleware for correlation ID tracking."""

import time
import uuid
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.core.logging import client_id_ctx, get_logger, request_id_ctx, user_id_ctx

logger = get_logger(__name__)

RequestResponseEndpoint = Callable[[Request], Awaitable[Response]]

QUIET_PATHS = {"/api/health"}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the logging context and log each request.

    The id comes from the ``X-Request-ID`` header when the caller sends one
    and is echoed back on the response. User and client ids left over from
    an earlier request on the same worker are cleared.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_ctx.set(request_id)
        user_id_ctx.set(None)
        client_id_ctx.set(None)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        if request.url.path not in QUIET_PATHS:
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        return response
