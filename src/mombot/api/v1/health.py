"""Service info, liveness and Graph connectivity endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

import structlog

from src.mombot.api.deps import get_app_settings, get_graph_client
from src.mombot.config import Settings
from src.mombot.graph.auth import OAuthError
from src.mombot.graph.client import GraphAPIError, GraphClient

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

SERVICE_NAME = "MoM Bot Transcript Service"


@router.get("/")
async def service_info():
    """API information."""
    return {
        "service": SERVICE_NAME,
        "version": "1.0.0",
        "description": "Automated meeting transcript fetcher for Microsoft Teams",
        "endpoints": {
            "GET /": "API information",
            "GET /health": "Health check",
            "GET /test/connection": "Test Graph API connection",
            "GET /webhook": "Webhook validation",
            "POST /webhook": "Webhook notifications",
            "POST /transcript/fetch": "Manual transcript fetch",
            "POST /transcript/{meetingId}": "Fetch transcript by meeting ID",
            "GET /transcript/{meetingId}/status": "Check transcript availability",
            "GET /meetings": "Look up your meeting by join URL",
            "GET /auth/login": "Sign in for delegated access",
            "GET /metrics": "Prometheus metrics",
        },
    }


@router.get("/health")
async def health_check(settings: Settings = Depends(get_app_settings)):
    """Basic liveness check. No external dependencies are checked."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "environment": settings.ENVIRONMENT.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/test/connection")
async def test_connection(graph: GraphClient = Depends(get_graph_client)):
    """Verify application credentials by reading the tenant organization."""
    try:
        await graph.get_organization()
    except (GraphAPIError, OAuthError, httpx.HTTPError) as exc:
        if getattr(exc, "status_code", None) in (401, 403):
            logger.error("graph.connection_auth_failed", error=str(exc))
        else:
            logger.error("graph.connection_failed", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "Microsoft Graph connection failed",
                "error": str(exc),
            },
        )

    logger.info("graph.connection_ok")
    return {"success": True, "message": "Microsoft Graph connection successful"}
