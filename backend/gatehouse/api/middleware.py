"""
Per-request correlation and access logging.

Every log line emitted while a request is in flight carries its request id.
Clients and load balancers may supply one in ``X-Request-ID``; otherwise a
fresh one is generated. Probe endpoints are logged at debug level so they
don't drown out checkout traffic.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS = frozenset({"/health", "/metrics"})


def _level_for(path: str, status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warning"
    return "debug" if path in QUIET_PATHS else "info"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        inbound = request.headers.get(REQUEST_ID_HEADER, "").strip()
        request_id = inbound[:64] or uuid.uuid4().hex[:12]
        path = request.url.path
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=path)

        try:
            response = await call_next(request)
        except Exception:
            elapsed = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("request_crashed", duration_ms=elapsed)
            raise

        elapsed = round((time.perf_counter() - started) * 1000, 2)
        getattr(logger, _level_for(path, response.status_code))(
            "request_finished", status_code=response.status_code, duration_ms=elapsed
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{elapsed}ms"
        return response
