"""Microsoft identity platform authentication for Graph access.

Two authorization modes reach Graph:

- Application: the app's own client-credentials token, addressing any
  organizer's meetings by explicit user id (``/users/{id}/...``).
- Delegated: a signed-in user's token from the authorization-code flow,
  limited to that user's own meetings (``/me/...``).

Provides the auth context types that select a mode, the cached
application token provider, and the authorization-code helpers (authorize
URL with a signed state, code exchange, refresh).
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
import structlog
from jose import JWTError, jwt
from pydantic import BaseModel

from src.mombot.config import Settings

logger = structlog.get_logger(__name__)

# Refresh tokens this long before they actually expire
EXPIRY_BUFFER_SECONDS = 5 * 60


class OAuthError(Exception):
    """Token endpoint rejected a request, or OAuth state is invalid."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


# ── Auth Context ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ApplicationAuth:
    """Application permissions acting on ``organizer_id``'s meetings."""

    organizer_id: str

    mode = "application"


@dataclass(frozen=True)
class DelegatedAuth:
    """Delegated permissions acting on the token owner's own meetings."""

    access_token: str

    mode = "delegated"

    def __repr__(self) -> str:
        return "DelegatedAuth(access_token='***')"


AuthContext = ApplicationAuth | DelegatedAuth


# ── Application Tokens (client credentials) ──────────────────────────────────


class ApplicationTokenProvider:
    """Fetches and caches an app-only Graph token.

    A single token is cached until five minutes before expiry. Concurrent
    callers share one refresh through an ``asyncio.Lock``.

    Args:
        http: Shared httpx client (lifecycle owned by the caller).
        settings: Application settings with Azure AD credentials.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self._http = http
        self._settings = settings
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def token_endpoint(self) -> str:
        return token_endpoint(self._settings)

    async def get_token(self) -> str:
        """Return a valid application access token."""
        if self._token and time.time() < self._expires_at - EXPIRY_BUFFER_SECONDS:
            return self._token

        async with self._lock:
            if self._token and time.time() < self._expires_at - EXPIRY_BUFFER_SECONDS:
                return self._token

            data = await _post_token_request(
                self._http,
                self.token_endpoint,
                {
                    "client_id": self._settings.AZURE_CLIENT_ID,
                    "client_secret": self._settings.AZURE_CLIENT_SECRET,
                    "scope": self._settings.GRAPH_APP_SCOPE,
                    "grant_type": "client_credentials",
                },
            )
            self._token = data["access_token"]
            self._expires_at = time.time() + int(data.get("expires_in", 3600))
            logger.info("graph_auth.app_token_acquired", expires_in=data.get("expires_in"))
            return self._token


# ── Delegated Tokens (authorization code) ────────────────────────────────────


class TokenSet(BaseModel):
    """Delegated tokens returned to the signed-in caller."""

    access_token: str
    refresh_token: str = ""
    expires_at: float
    user_id: str | None = None
    user_email: str | None = None


def token_endpoint(settings: Settings) -> str:
    return f"{settings.AZURE_AUTHORITY_HOST}/{settings.AZURE_TENANT_ID}/oauth2/v2.0/token"


def create_state(settings: Settings) -> str:
    """Create a signed, short-lived OAuth ``state`` value (CSRF protection)."""
    now = datetime.now(timezone.utc)
    claims = {
        "nonce": secrets.token_urlsafe(16),
        "iat": now,
        "exp": now + timedelta(seconds=settings.OAUTH_STATE_TTL_SECONDS),
        "type": "oauth_state",
    }
    return jwt.encode(claims, settings.OAUTH_STATE_SECRET, algorithm=settings.OAUTH_STATE_ALGORITHM)


def verify_state(state: str, settings: Settings) -> None:
    """Raise OAuthError unless ``state`` was issued by create_state and is unexpired."""
    try:
        claims = jwt.decode(
            state,
            settings.OAUTH_STATE_SECRET,
            algorithms=[settings.OAUTH_STATE_ALGORITHM],
        )
    except JWTError as exc:
        raise OAuthError("Invalid or expired OAuth state", status_code=400) from exc
    if claims.get("type") != "oauth_state":
        raise OAuthError("Invalid OAuth state", status_code=400)


def build_authorize_url(settings: Settings, state: str) -> str:
    """Microsoft login URL the user is redirected to."""
    params = urlencode(
        {
            "client_id": settings.AZURE_CLIENT_ID,
            "response_type": "code",
            "redirect_uri": settings.OAUTH_REDIRECT_URI,
            "response_mode": "query",
            "scope": " ".join(settings.oauth_scopes),
            "state": state,
        }
    )
    return f"{settings.AZURE_AUTHORITY_HOST}/{settings.AZURE_TENANT_ID}/oauth2/v2.0/authorize?{params}"


async def _post_token_request(http: httpx.AsyncClient, url: str, form: dict[str, str]) -> dict:
    response = await http.post(url, data=form)
    if response.status_code >= 400:
        logger.error(
            "graph_auth.token_request_failed",
            status_code=response.status_code,
            grant_type=form.get("grant_type"),
            body=response.text[:500],
        )
        raise OAuthError(
            f"Token request failed: {response.status_code}",
            status_code=response.status_code,
        )
    return response.json()


async def exchange_code(http: httpx.AsyncClient, settings: Settings, code: str) -> TokenSet:
    """Exchange an authorization code for delegated tokens."""
    data = await _post_token_request(
        http,
        token_endpoint(settings),
        {
            "client_id": settings.AZURE_CLIENT_ID,
            "client_secret": settings.AZURE_CLIENT_SECRET,
            "code": code,
            "redirect_uri": settings.OAUTH_REDIRECT_URI,
            "grant_type": "authorization_code",
            "scope": " ".join(settings.oauth_scopes),
        },
    )
    logger.info("graph_auth.code_exchanged")
    return TokenSet(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token", ""),
        expires_at=time.time() + int(data.get("expires_in", 3600)),
    )


async def refresh_tokens(http: httpx.AsyncClient, settings: Settings, refresh_token: str) -> TokenSet:
    """Refresh delegated tokens; keeps the old refresh token if none is returned."""
    data = await _post_token_request(
        http,
        token_endpoint(settings),
        {
            "client_id": settings.AZURE_CLIENT_ID,
            "client_secret": settings.AZURE_CLIENT_SECRET,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
            "scope": " ".join(settings.oauth_scopes),
        },
    )
    logger.info("graph_auth.token_refreshed")
    return TokenSet(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or refresh_token,
        expires_at=time.time() + int(data.get("expires_in", 3600)),
    )


def is_token_expired(tokens: TokenSet) -> bool:
    """True when the access token expires within the next five minutes."""
    return time.time() >= tokens.expires_at - EXPIRY_BUFFER_SECONDS


async def get_valid_tokens(http: httpx.AsyncClient, settings: Settings, tokens: TokenSet) -> TokenSet:
    """Return ``tokens`` unchanged, or refreshed if they are about to expire."""
    if is_token_expired(tokens):
        logger.info("graph_auth.token_expired_refreshing")
        return await refresh_tokens(http, settings, tokens.refresh_token)
    return tokens
