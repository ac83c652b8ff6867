"""Delegated sign-in endpoints (Microsoft authorization-code flow).

The service keeps no sessions: after sign-in the caller receives the token
set and sends ``Authorization: Bearer <access_token>`` on later requests.
The ``state`` parameter is a signed, short-lived JWT, so it can be checked
on callback without server-side storage.
"""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

import structlog

from src.mombot.api.deps import get_app_settings, get_graph_client, get_http_client
from src.mombot.config import Settings
from src.mombot.graph.auth import (
    DelegatedAuth,
    TokenSet,
    build_authorize_url,
    create_state,
    exchange_code,
    get_valid_tokens,
    verify_state,
)
from src.mombot.graph.client import GraphAPIError, GraphClient

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/login")
async def login(settings: Settings = Depends(get_app_settings)) -> RedirectResponse:
    """Redirect to the Microsoft sign-in page."""
    url = build_authorize_url(settings, create_state(settings))
    logger.info("auth.login_redirect")
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/callback", response_model=TokenSet)
async def callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    settings: Settings = Depends(get_app_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
    graph: GraphClient = Depends(get_graph_client),
) -> TokenSet:
    """Exchange the authorization code and return the delegated token set."""
    if error:
        logger.warning("auth.callback_error", error=error, description=error_description)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Sign-in failed: {error_description or error}",
        )
    if not code or not state:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing code or state",
        )

    verify_state(state, settings)
    tokens = await exchange_code(http, settings, code)

    try:
        profile = await graph.get_me(DelegatedAuth(tokens.access_token))
    except (GraphAPIError, httpx.HTTPError):
        logger.warning("auth.profile_lookup_failed", exc_info=True)
        return tokens

    tokens = tokens.model_copy(
        update={
            "user_id": profile.get("id"),
            "user_email": profile.get("mail") or profile.get("userPrincipalName"),
        }
    )
    logger.info("auth.signed_in", user_email=tokens.user_email)
    return tokens


@router.post("/refresh", response_model=TokenSet)
async def refresh(
    tokens: TokenSet,
    settings: Settings = Depends(get_app_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> TokenSet:
    """Return the token set, refreshed if it expires within five minutes."""
    if not tokens.refresh_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="refresh_token is required",
        )
    refreshed = await get_valid_tokens(http, settings, tokens)
    if refreshed is not tokens:
        refreshed = refreshed.model_copy(update={"user_id": tokens.user_id, "user_email": tokens.user_email})
    return refreshed
