"""Tests for Graph authentication: app token caching, OAuth state, code flow."""

from __future__ import annotations

import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.mombot.graph.auth import (
    ApplicationTokenProvider,
    OAuthError,
    TokenSet,
    build_authorize_url,
    create_state,
    exchange_code,
    get_valid_tokens,
    is_token_expired,
    refresh_tokens,
    verify_state,
)


def _token_transport(responses: list[httpx.Response], seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses[min(len(seen), len(responses)) - 1]

    return httpx.MockTransport(handler)


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class TestApplicationTokenProvider:
    """Client-credentials token acquisition and caching."""

    @pytest.mark.asyncio
    async def test_token_is_cached(self, settings):
        seen: list[httpx.Request] = []
        transport = _token_transport(
            [httpx.Response(200, json={"access_token": "app-1", "expires_in": 3600})], seen
        )

        async with httpx.AsyncClient(transport=transport) as http:
            provider = ApplicationTokenProvider(http, settings)
            first = await provider.get_token()
            second = await provider.get_token()

        assert first == second == "app-1"
        assert len(seen) == 1
        assert seen[0].url == "https://login.microsoftonline.com/tenant-123/oauth2/v2.0/token"
        form = _form(seen[0])
        assert form["grant_type"] == "client_credentials"
        assert form["client_id"] == "client-123"
        assert form["scope"] == "https://graph.microsoft.com/.default"

    @pytest.mark.asyncio
    async def test_token_inside_expiry_buffer_is_refetched(self, settings):
        seen: list[httpx.Request] = []
        transport = _token_transport(
            [
                httpx.Response(200, json={"access_token": "short-lived", "expires_in": 60}),
                httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600}),
            ],
            seen,
        )

        async with httpx.AsyncClient(transport=transport) as http:
            provider = ApplicationTokenProvider(http, settings)
            assert await provider.get_token() == "short-lived"
            assert await provider.get_token() == "fresh"

        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_token_endpoint_failure_raises_oauth_error(self, settings):
        seen: list[httpx.Request] = []
        transport = _token_transport([httpx.Response(401, json={"error": "invalid_client"})], seen)

        async with httpx.AsyncClient(transport=transport) as http:
            provider = ApplicationTokenProvider(http, settings)
            with pytest.raises(OAuthError) as exc_info:
                await provider.get_token()

        assert exc_info.value.status_code == 401


class TestOAuthState:
    """Signed state for the authorization-code redirect."""

    def test_round_trip(self, settings):
        verify_state(create_state(settings), settings)

    def test_states_are_unique(self, settings):
        assert create_state(settings) != create_state(settings)

    def test_tampered_state_rejected(self, settings):
        header, payload, _ = create_state(settings).split(".")
        other_signature = create_state(settings).split(".")[2]

        with pytest.raises(OAuthError) as exc_info:
            verify_state(f"{header}.{payload}.{other_signature}", settings)

        assert exc_info.value.status_code == 400

    def test_state_signed_with_other_secret_rejected(self, settings, settings_factory):
        foreign = create_state(settings_factory(OAUTH_STATE_SECRET="someone-else"))

        with pytest.raises(OAuthError):
            verify_state(foreign, settings)

    def test_expired_state_rejected(self, settings_factory):
        expired_settings = settings_factory(OAUTH_STATE_TTL_SECONDS=-60)

        with pytest.raises(OAuthError):
            verify_state(create_state(expired_settings), expired_settings)

    def test_authorize_url(self, settings):
        url = build_authorize_url(settings, "state-value")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == "login.microsoftonline.com"
        assert parsed.path == "/tenant-123/oauth2/v2.0/authorize"
        assert params["client_id"] == ["client-123"]
        assert params["response_type"] == ["code"]
        assert params["redirect_uri"] == ["http://localhost:8000/auth/callback"]
        assert params["state"] == ["state-value"]
        assert "OnlineMeetings.Read" in params["scope"][0].split()
        assert "offline_access" in params["scope"][0].split()


class TestDelegatedTokens:
    """Authorization-code exchange and refresh."""

    @pytest.mark.asyncio
    async def test_exchange_code(self, settings):
        seen: list[httpx.Request] = []
        transport = _token_transport(
            [httpx.Response(200, json={"access_token": "user-at", "refresh_token": "user-rt", "expires_in": 3600})],
            seen,
        )

        async with httpx.AsyncClient(transport=transport) as http:
            tokens = await exchange_code(http, settings, "auth-code")

        assert tokens.access_token == "user-at"
        assert tokens.refresh_token == "user-rt"
        assert tokens.expires_at > time.time() + 3000
        form = _form(seen[0])
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["redirect_uri"] == settings.OAUTH_REDIRECT_URI

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_not_rotated(self, settings):
        seen: list[httpx.Request] = []
        transport = _token_transport([httpx.Response(200, json={"access_token": "new-at", "expires_in": 3600})], seen)

        async with httpx.AsyncClient(transport=transport) as http:
            tokens = await refresh_tokens(http, settings, "old-rt")

        assert tokens.access_token == "new-at"
        assert tokens.refresh_token == "old-rt"
        assert _form(seen[0])["grant_type"] == "refresh_token"

    @pytest.mark.asyncio
    async def test_get_valid_tokens_skips_refresh_when_fresh(self, settings):
        seen: list[httpx.Request] = []
        tokens = TokenSet(access_token="at", refresh_token="rt", expires_at=time.time() + 3600)

        async with httpx.AsyncClient(transport=_token_transport([httpx.Response(500)], seen)) as http:
            result = await get_valid_tokens(http, settings, tokens)

        assert result is tokens
        assert seen == []

    @pytest.mark.asyncio
    async def test_get_valid_tokens_refreshes_near_expiry(self, settings):
        seen: list[httpx.Request] = []
        tokens = TokenSet(access_token="at", refresh_token="rt", expires_at=time.time() + 60)
        transport = _token_transport(
            [httpx.Response(200, json={"access_token": "at-2", "refresh_token": "rt-2", "expires_in": 3600})],
            seen,
        )

        async with httpx.AsyncClient(transport=transport) as http:
            result = await get_valid_tokens(http, settings, tokens)

        assert is_token_expired(tokens)
        assert result.access_token == "at-2"
        assert result.refresh_token == "rt-2"
        assert len(seen) == 1
