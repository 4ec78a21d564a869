"""Structured request logging.

configure_structlog() sets up processors once at startup: JSON lines in
production, coloured console output elsewhere.

LoggingMiddleware binds request_id, tenant_id and user_id into structlog's
contextvars for the duration of each request, so every log line emitted by
the service, repositories and search engine while serving it carries the
same identifiers. One ``request_completed`` (or ``request_error``) line is
written per request, and the request id is echoed as X-Request-ID.

Background ingestion runs are outside any request and log with their own
document_id / run_id bindings instead.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def configure_structlog(log_level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Level name; defaults to settings.LOG_LEVEL.
        json_logs: Force JSON rendering; defaults to True in production.
    """
    settings = get_settings()
    level_name = (log_level or settings.LOG_LEVEL).upper()
    if json_logs is None:
        json_logs = settings.ENVIRONMENT == Environment.production

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    renderer = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request identifiers into the log context and logs each request.

    An incoming X-Request-ID is reused so ids can be followed across the
    gateway; otherwise a fresh UUID is generated.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        start_time = time.monotonic()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            tenant_id=request.headers.get("X-Tenant-ID"),
            user_id=request.headers.get("X-User-ID"),
        ):
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "request_error",
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=_elapsed_ms(start_time),
                )
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            if response.status_code >= 500:
                log_method = logger.error
            elif response.status_code >= 400:
                log_method = logger.warning
            else:
                log_method = logger.info
            log_method(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=_elapsed_ms(start_time),
            )
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.monotonic() - start_time) * 1000, 2)
