"""Request timing and correlation middleware for the estimating API."""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from steel_estimator.services.logging_config import request_id_var

logger = logging.getLogger("steel-estimator.api.middleware")

REQUEST_ID_HEADER = "X-Request-ID"
PROCESS_TIME_HEADER = "X-Process-Time"

# Probes hit these every few seconds
QUIET_PATHS = {"/health"}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's X-Request-ID (or mints one), exposes it to loggers
    for the lifetime of the request and echoes it back with the processing
    time. Server errors are logged at ERROR, everything else at INFO.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            try:
                response: Response = await call_next(request)
            except Exception:
                logger.exception(
                    f"{request.method} {request.url.path} raised",
                    extra={"duration_ms": _elapsed_ms(started)},
                )
                raise

            duration_ms = _elapsed_ms(started)
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[PROCESS_TIME_HEADER] = str(duration_ms)

            if request.url.path not in QUIET_PATHS:
                level = logging.ERROR if response.status_code >= 500 else logging.INFO
                logger.log(
                    level,
                    f"{request.method} {request.url.path} -> {response.status_code}",
                    extra={"duration_ms": duration_ms},
                )
            return response
        finally:
            request_id_var.reset(token)
