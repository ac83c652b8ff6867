"""Structured logging setup and per-request logging middleware.

Every request gets a request id (taken from an incoming ``X-Request-ID``
header or generated) that is bound into structlog's context variables, so
log lines from Graph calls, discovery and notification tasks started by
the request carry the same ``request_id``. Background tasks created with
``asyncio.create_task`` copy the context at creation time and keep it.

Rendering is JSON in production and console output elsewhere. Token-like
fields are masked before rendering.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.mombot.config import Environment, Settings, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_SECRET_KEYS = frozenset({"access_token", "refresh_token", "client_secret", "code", "validation_token"})

# Polled by load balancers and Prometheus; logged at debug only
_QUIET_PATHS = frozenset({"/health", "/metrics"})


def _mask_secrets(logger, method_name: str, event_dict: dict) -> dict:
    for key in _SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def configure_structlog(settings: Settings | None = None) -> None:
    """Configure structlog on top of stdlib logging at ``LOG_LEVEL``."""
    settings = settings or get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _mask_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request and echo the request id in the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        auth_mode = "delegated" if request.headers.get("Authorization", "").startswith("Bearer ") else "application"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "http.request_failed",
                method=request.method,
                path=request.url.path,
                auth_mode=auth_mode,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id

        if response.status_code >= 500:
            log_method = logger.error
        elif response.status_code >= 400:
            log_method = logger.warning
        elif request.url.path in _QUIET_PATHS:
            log_method = logger.debug
        else:
            log_method = logger.info

        log_method(
            "http.request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            auth_mode=auth_mode,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            request_id=request_id,
        )
        return response
