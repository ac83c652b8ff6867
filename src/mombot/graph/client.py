"""Async client for the Microsoft Graph online-meeting and transcript APIs.

GraphClient wraps an explicitly constructed ``httpx.AsyncClient`` whose
lifecycle belongs to the application (opened in the lifespan, closed on
shutdown). Every call takes an auth context that selects both the URL prefix
and the bearer token:

- ``ApplicationAuth`` -> ``/users/{organizer_id}/...`` with the app token
- ``DelegatedAuth``   -> ``/me/...`` with the caller's token

Transient failures (connect errors, timeouts, 429 and 5xx) are retried with
tenacity, 3 attempts, exponential backoff 1-10s. Other non-2xx responses
raise GraphAPIError immediately.
"""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.mombot.core.monitoring import record_graph_response
from src.mombot.graph.auth import ApplicationAuth, AuthContext, DelegatedAuth
from src.mombot.graph.content import (
    ByteStreamContent,
    BytesContent,
    TextContent,
    TranscriptContent,
)
from src.mombot.transcripts.schemas import TranscriptMetadata

logger = structlog.get_logger(__name__)

VTT_MEDIA_TYPE = "text/vtt"
UNEXPECTED_RESPONSE = "Unexpected Graph response"


class GraphAPIError(Exception):
    """An error response, or an unusable 2xx response, from Microsoft Graph."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str | None = None,
        path: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.code = code
        self.path = path
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    return isinstance(exc, GraphAPIError) and (exc.status_code == 429 or exc.status_code >= 500)


_graph_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...


def _error_from_response(response: httpx.Response, path: str) -> GraphAPIError:
    code = None
    message = f"Graph request failed with status {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code")
        message = body["error"].get("message") or message
    return GraphAPIError(response.status_code, message, code=code, path=path)


class GraphClient:
    """Microsoft Graph client scoped by auth context.

    Args:
        http: Shared httpx client. Not closed by GraphClient.
        token_provider: Supplies application tokens for ApplicationAuth.
        base_url: Graph endpoint including version, e.g.
            ``https://graph.microsoft.com/v1.0``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token_provider: TokenProvider,
        base_url: str = "https://graph.microsoft.com/v1.0",
    ) -> None:
        self._http = http
        self._token_provider = token_provider
        self._base_url = base_url.rstrip("/")

    @staticmethod
    def meetings_path(auth: AuthContext) -> str:
        """Collection path for online meetings under the given auth mode."""
        if isinstance(auth, ApplicationAuth):
            return f"/users/{quote(auth.organizer_id, safe='')}/onlineMeetings"
        return "/me/onlineMeetings"

    async def _authorization(self, auth: AuthContext | None) -> dict[str, str]:
        if isinstance(auth, DelegatedAuth):
            token = auth.access_token
        else:
            token = await self._token_provider.get_token()
        return {"Authorization": f"Bearer {token}"}

    async def _get_json(
        self,
        path: str,
        auth: AuthContext | None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        headers = await self._authorization(auth)
        response = await self._http.get(f"{self._base_url}{path}", headers=headers, params=params)
        record_graph_response(response.status_code)
        if response.status_code >= 400:
            raise _error_from_response(response, path)
        try:
            body = response.json()
        except ValueError as exc:
            raise GraphAPIError(response.status_code, UNEXPECTED_RESPONSE, path=path) from exc
        if not isinstance(body, dict):
            raise GraphAPIError(response.status_code, UNEXPECTED_RESPONSE, path=path)
        return body

    # ── Meetings ─────────────────────────────────────────────────────────────

    @_graph_retry
    async def get_meeting(self, meeting_id: str, auth: AuthContext) -> dict[str, Any]:
        """GET the onlineMeeting object."""
        path = f"{self.meetings_path(auth)}/{quote(meeting_id, safe='')}"
        meeting = await self._get_json(path, auth)
        logger.info(
            "graph.meeting_retrieved",
            meeting_id=meeting_id,
            auth_mode=auth.mode,
            subject=meeting.get("subject"),
        )
        return meeting

    @_graph_retry
    async def find_meeting_by_join_url(self, join_url: str, auth: DelegatedAuth) -> dict[str, Any] | None:
        """Look up the caller's meeting by its Teams join URL."""
        escaped = join_url.replace("'", "''")
        data = await self._get_json(
            self.meetings_path(auth),
            auth,
            params={"$filter": f"JoinWebUrl eq '{escaped}'"},
        )
        meetings = data.get("value") or []
        return meetings[0] if meetings else None

    @_graph_retry
    async def list_meetings(self, auth: DelegatedAuth) -> list[dict[str, Any]]:
        """List the caller's meetings.

        Graph usually rejects unfiltered listing with a 400; that surfaces
        as GraphAPIError.
        """
        data = await self._get_json(self.meetings_path(auth), auth)
        return list(data.get("value") or [])

    # ── Transcripts ──────────────────────────────────────────────────────────

    @_graph_retry
    async def list_transcripts(self, meeting_id: str, auth: AuthContext) -> list[TranscriptMetadata]:
        """GET the meeting's transcript collection."""
        path = f"{self.meetings_path(auth)}/{quote(meeting_id, safe='')}/transcripts"
        data = await self._get_json(path, auth)
        try:
            transcripts = [TranscriptMetadata.model_validate(item) for item in data.get("value") or []]
        except ValidationError as exc:
            raise GraphAPIError(200, UNEXPECTED_RESPONSE, path=path) from exc
        logger.info(
            "graph.transcripts_listed",
            meeting_id=meeting_id,
            auth_mode=auth.mode,
            transcript_count=len(transcripts),
        )
        return transcripts

    @_graph_retry
    async def get_transcript_content(
        self,
        meeting_id: str,
        transcript_id: str,
        auth: AuthContext,
    ) -> TranscriptContent:
        """GET transcript content as WebVTT.

        Returns a ByteStreamContent for chunked responses (the caller must
        drain it with ``read_content``), TextContent when the response
        declares a text type or charset, and BytesContent otherwise.
        """
        path = (
            f"{self.meetings_path(auth)}/{quote(meeting_id, safe='')}"
            f"/transcripts/{quote(transcript_id, safe='')}/content"
        )
        headers = await self._authorization(auth)
        headers["Accept"] = VTT_MEDIA_TYPE
        request = self._http.build_request("GET", f"{self._base_url}{path}", headers=headers)
        response = await self._http.send(request, stream=True)
        record_graph_response(response.status_code)

        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            raise _error_from_response(response, path)

        if response.headers.get("transfer-encoding", "").lower() == "chunked":
            logger.debug("graph.transcript_content_streaming", meeting_id=meeting_id)
            return ByteStreamContent(chunks=response.aiter_bytes(), close=response.aclose)

        try:
            await response.aread()
        finally:
            await response.aclose()

        content_type = response.headers.get("content-type", "").lower()
        if content_type.startswith("text/") or "charset=" in content_type:
            return TextContent(text=response.text)
        return BytesContent(data=response.content)

    # ── Identity ─────────────────────────────────────────────────────────────

    @_graph_retry
    async def get_me(self, auth: DelegatedAuth) -> dict[str, Any]:
        """Profile of the signed-in user (id, mail, userPrincipalName)."""
        return await self._get_json("/me", auth, params={"$select": "id,displayName,mail,userPrincipalName"})

    @_graph_retry
    async def get_organization(self) -> dict[str, Any]:
        """Tenant organization info; used as an application connectivity check."""
        return await self._get_json("/organization", None)
