"""
Observability middleware and logging setup.

Every request gets a correlation ID (taken from the caller or generated),
which is echoed back and attached to the request log line together with the
acting user and whether an idempotent response was replayed.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("warehouse.http")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName"
}


class StructuredFormatter(logging.Formatter):
    """
    Formatter that appends the `extra=` fields of a record as key=value pairs.

    Example:
        2026-01-01 10:00:00,000 INFO [warehouse.http] Request completed correlation_id=abc status_code=201
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not extras:
            return line
        fields = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{line} {fields}"


CORRELATION_HEADER = "X-Correlation-ID"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root `warehouse` logger once at startup."""
    root = logging.getLogger("warehouse")
    if root.handlers:
        root.setLevel(level.upper())
        return
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper())
    root.propagate = False


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "actor_id": request.headers.get("X-Actor-Id"),
            "ip": request.client.host if request.client else "unknown",
            "replayed": response.headers.get("Idempotent-Replayed") == "true",
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=log_data)
        else:
            logger.info("Request completed", extra=log_data)

        return response
