"""
Structured Logging Middleware

One access-log line per request carrying the request ID, the resolved
caller and the timing. Coordinates and addresses never reach the access
log: only method, path, status and the caller's id are written, and
probe endpoints are skipped.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import datetime, timezone

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from geotrack.auth import client_ip

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PROBE_PATHS = frozenset({"/health", "/ready", "/metrics"})

# Scheduler and driver loggers that would otherwise log every job run or statement
NOISY_LOGGERS = ("apscheduler.executors.default", "apscheduler.scheduler", "aiosqlite")


class RequestIdFilter(logging.Filter):
    """Stamp every record with the request ID of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    EXTRA_FIELDS = (
        "caller_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
        "client_ip",
        "error_code",
        "subject_id",
        "operation",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
        }
        payload.update({key: getattr(record, key) for key in self.EXTRA_FIELDS if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, logger_name: str = "geotrack.access"):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                self._access_log(request, 500, started, error=str(exc))
                raise
            response.headers["X-Request-ID"] = request_id
            self._access_log(request, response.status_code, started)
            return response
        finally:
            request_id_var.reset(token)

    def _access_log(self, request: Request, status_code: int, started: float, error: str | None = None) -> None:
        if request.url.path in PROBE_PATHS:
            return

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "client_ip": client_ip(request) or "unknown",
        }
        # Set by the auth dependency once the bearer token has been resolved
        caller_id = getattr(request.state, "caller_id", None)
        if caller_id is not None:
            extra["caller_id"] = caller_id

        message = f"{request.method} {request.url.path} {status_code} {duration_ms}ms"
        if error:
            message = f"{message} error={error}"
        self.logger.log(level_for_status(status_code), message, extra=extra)


def setup_structured_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Install a single stderr handler on the root logger."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
