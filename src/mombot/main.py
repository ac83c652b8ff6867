"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the exception handlers that turn pipeline errors into HTTP responses, and a
lifespan that builds the Graph client and transcript pipeline on startup.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.mombot.config import Settings, get_settings
from src.mombot.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.mombot.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.mombot.api.v1.router import router as v1_router
from src.mombot.graph.auth import ApplicationTokenProvider, OAuthError
from src.mombot.graph.client import GraphAPIError, GraphClient
from src.mombot.transcripts.discovery import TranscriptDiscovery
from src.mombot.transcripts.errors import (
    MalformedTranscriptError,
    MeetingNotFoundError,
    TranscriptNotAvailableError,
)
from src.mombot.webhooks.intake import NotificationIntake

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build the pipeline on startup, drain it on shutdown."""
    settings: Settings = app.state.settings
    configure_structlog(settings)

    for warning in settings.config_warnings():
        logger.warning("config.warning", detail=warning)

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    http = httpx.AsyncClient(timeout=settings.GRAPH_TIMEOUT)
    token_provider = ApplicationTokenProvider(http, settings)
    graph = GraphClient(http, token_provider, base_url=settings.GRAPH_API_ENDPOINT)
    discovery = TranscriptDiscovery(
        graph,
        max_attempts=settings.TRANSCRIPT_RETRY_ATTEMPTS,
        retry_delay=settings.TRANSCRIPT_RETRY_DELAY_SECONDS,
    )
    intake = NotificationIntake(
        discovery,
        client_state=settings.WEBHOOK_CLIENT_STATE,
        settle_delay=settings.NOTIFICATION_SETTLE_DELAY_SECONDS,
    )

    app.state.http_client = http
    app.state.graph_client = graph
    app.state.discovery = discovery
    app.state.notification_intake = intake

    logger.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        graph_endpoint=settings.GRAPH_API_ENDPOINT,
        retry_attempts=settings.TRANSCRIPT_RETRY_ATTEMPTS,
    )

    yield

    await intake.shutdown()
    await http.aclose()
    logger.info("app.stopped")


# ── Exception Handlers ───────────────────────────────────────────────────────


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


async def _meeting_not_found(request: Request, exc: MeetingNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, "Meeting not found", str(exc))


async def _transcript_not_available(request: Request, exc: TranscriptNotAvailableError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, "Transcript not available", str(exc))


async def _malformed_transcript(request: Request, exc: MalformedTranscriptError) -> JSONResponse:
    return _error_response(status.HTTP_502_BAD_GATEWAY, "Malformed transcript", str(exc))


async def _graph_error(request: Request, exc: GraphAPIError) -> JSONResponse:
    if exc.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
        return _error_response(exc.status_code, "Access denied by Microsoft Graph", exc.message)
    logger.error("graph.request_failed", status_code=exc.status_code, code=exc.code, path=exc.path)
    return _error_response(status.HTTP_502_BAD_GATEWAY, "Microsoft Graph request failed", exc.message)


async def _transport_error(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    logger.error("graph.transport_failed", error=str(exc), error_type=type(exc).__name__)
    return _error_response(status.HTTP_502_BAD_GATEWAY, "Microsoft Graph unreachable", str(exc))


async def _oauth_error(request: Request, exc: OAuthError) -> JSONResponse:
    return _error_response(exc.status_code or status.HTTP_401_UNAUTHORIZED, "Authentication failed", str(exc))


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="MoM Bot Transcript Service",
        version="1.0.0",
        description="Automated meeting transcript fetcher for Microsoft Teams",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Last added runs outermost
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Outermost, so requests rejected by inner layers are still counted
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(MeetingNotFoundError, _meeting_not_found)
    app.add_exception_handler(TranscriptNotAvailableError, _transcript_not_available)
    app.add_exception_handler(MalformedTranscriptError, _malformed_transcript)
    app.add_exception_handler(GraphAPIError, _graph_error)
    app.add_exception_handler(httpx.HTTPError, _transport_error)
    app.add_exception_handler(OAuthError, _oauth_error)

    app.include_router(v1_router)

    # Scrape target; not part of the versioned API
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
