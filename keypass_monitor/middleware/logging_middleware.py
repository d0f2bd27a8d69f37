"""
Request logging for the monitoring API.

Every request gets a request id bound into the structlog context, so engine
logs emitted while serving it (retries, error reports) carry the same id.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("keypass_monitor.http")

# Polled by orchestrators; logged at debug only
QUIET_PATHS = frozenset({"/healthz"})


def _network_from_path(path: str):
    parts = path.strip("/").split("/")
    if len(parts) >= 2 and parts[0] == "networks":
        return parts[1]
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its network, status and duration."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        network = _network_from_path(path)
        if network:
            structlog.contextvars.bind_contextvars(network=network)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            if status_code >= 500:
                log = logger.error
            elif status_code >= 400:
                log = logger.warning
            elif path in QUIET_PATHS:
                log = logger.debug
            else:
                log = logger.info

            log(
                "http_request",
                method=request.method,
                path=path,
                status=status_code,
                duration_ms=duration_ms,
            )
