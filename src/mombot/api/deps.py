"""FastAPI dependencies for pipeline services and caller authorization.

Services are built once in the application lifespan and stored on
``app.state``; these helpers fetch them per request and answer 503 when
one was not initialized.
"""

from __future__ import annotations

from typing import Any

import httpx
from fastapi import HTTPException, Request, status

from src.mombot.config import Settings, get_settings
from src.mombot.graph.auth import DelegatedAuth
from src.mombot.graph.client import GraphClient
from src.mombot.transcripts.discovery import TranscriptDiscovery
from src.mombot.webhooks.intake import NotificationIntake


def _from_state(request: Request, name: str, label: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return value


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with (falls back to the global instance)."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_http_client(request: Request) -> httpx.AsyncClient:
    return _from_state(request, "http_client", "HTTP client")


def get_graph_client(request: Request) -> GraphClient:
    return _from_state(request, "graph_client", "Graph client")


def get_discovery(request: Request) -> TranscriptDiscovery:
    return _from_state(request, "discovery", "Transcript discovery")


def get_notification_intake(request: Request) -> NotificationIntake:
    return _from_state(request, "notification_intake", "Notification intake")


def get_delegated_auth(request: Request) -> DelegatedAuth | None:
    """Delegated auth from an ``Authorization: Bearer`` header, if present.

    The token is a Microsoft Graph access token obtained through
    ``/auth/login``; it is passed through to Graph unchanged.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return DelegatedAuth(access_token=token) if token else None
