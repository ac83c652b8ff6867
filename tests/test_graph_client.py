"""Tests for GraphClient and the transcript content variants.

Uses httpx.MockTransport so no network access is needed. Only non-transient
errors are exercised; transient ones (429/5xx) go through tenacity backoff.
"""

from __future__ import annotations

import httpx
import pytest

from src.mombot.graph.auth import ApplicationAuth, DelegatedAuth
from src.mombot.graph.client import GraphAPIError, GraphClient
from src.mombot.graph.content import (
    ByteStreamContent,
    BytesContent,
    TextContent,
    read_content,
)

BASE_URL = "https://graph.test/v1.0"
VTT = "WEBVTT\n\n00:00:05.000 --> 00:00:10.000\n<v John Smith>Hello</v>\n"


class StaticTokenProvider:
    def __init__(self, token: str = "app-token") -> None:
        self.token = token
        self.calls = 0

    async def get_token(self) -> str:
        self.calls += 1
        return self.token


def _make_client(handler, provider: StaticTokenProvider | None = None):
    provider = provider or StaticTokenProvider()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GraphClient(http, provider, base_url=BASE_URL), http, provider


class TestAuthModeRouting:
    """Path prefix and bearer token follow the auth context."""

    @pytest.mark.asyncio
    async def test_application_mode_uses_users_path_and_app_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "m-1", "subject": "Daily"})

        client, http, provider = _make_client(handler)
        async with http:
            meeting = await client.get_meeting("m-1", ApplicationAuth(organizer_id="org-1"))

        assert meeting["subject"] == "Daily"
        assert seen[0].url.path == "/v1.0/users/org-1/onlineMeetings/m-1"
        assert seen[0].headers["Authorization"] == "Bearer app-token"
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_delegated_mode_uses_me_path_and_caller_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "m-1"})

        client, http, provider = _make_client(handler)
        async with http:
            await client.get_meeting("m-1", DelegatedAuth(access_token="user-token"))

        assert seen[0].url.path == "/v1.0/me/onlineMeetings/m-1"
        assert seen[0].headers["Authorization"] == "Bearer user-token"
        assert provider.calls == 0

    def test_delegated_auth_repr_hides_token(self):
        assert "secret" not in repr(DelegatedAuth(access_token="secret"))


class TestGraphRequests:
    """Listing, lookup and error translation."""

    @pytest.mark.asyncio
    async def test_list_transcripts_parses_metadata(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1.0/users/org-1/onlineMeetings/m-1/transcripts"
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "id": "t-1",
                            "createdDateTime": "2026-02-04T09:20:00Z",
                            "meetingOrganizerId": "org-1",
                            "transcriptContentUrl": "https://graph.test/content",
                        }
                    ]
                },
            )

        client, http, _ = _make_client(handler)
        async with http:
            transcripts = await client.list_transcripts("m-1", ApplicationAuth(organizer_id="org-1"))

        assert len(transcripts) == 1
        assert transcripts[0].id == "t-1"
        assert transcripts[0].created_date_time == "2026-02-04T09:20:00Z"
        assert transcripts[0].meeting_organizer_id == "org-1"

    @pytest.mark.asyncio
    async def test_find_meeting_by_join_url_filters_and_escapes(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": [{"id": "m-9"}]})

        client, http, _ = _make_client(handler)
        async with http:
            meeting = await client.find_meeting_by_join_url(
                "https://teams.microsoft.com/l/meetup-join/it's",
                DelegatedAuth(access_token="user-token"),
            )

        assert meeting == {"id": "m-9"}
        assert seen[0].url.path == "/v1.0/me/onlineMeetings"
        assert seen[0].url.params["$filter"] == (
            "JoinWebUrl eq 'https://teams.microsoft.com/l/meetup-join/it''s'"
        )

    @pytest.mark.asyncio
    async def test_find_meeting_by_join_url_returns_none_when_empty(self):
        client, http, _ = _make_client(lambda request: httpx.Response(200, json={"value": []}))
        async with http:
            meeting = await client.find_meeting_by_join_url("https://x", DelegatedAuth(access_token="t"))

        assert meeting is None

    @pytest.mark.asyncio
    async def test_error_body_becomes_graph_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404,
                json={"error": {"code": "NotFound", "message": "Meeting does not exist"}},
            )

        client, http, _ = _make_client(handler)
        async with http:
            with pytest.raises(GraphAPIError) as exc_info:
                await client.get_meeting("m-1", ApplicationAuth(organizer_id="org-1"))

        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "NotFound"
        assert exc_info.value.message == "Meeting does not exist"
        assert exc_info.value.is_not_found

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        client, http, _ = _make_client(lambda request: httpx.Response(403, text="Forbidden"))
        async with http:
            with pytest.raises(GraphAPIError) as exc_info:
                await client.get_me(DelegatedAuth(access_token="t"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.code is None
        assert not exc_info.value.is_not_found

    @pytest.mark.asyncio
    async def test_success_with_non_json_body_becomes_graph_api_error(self):
        client, http, _ = _make_client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        async with http:
            with pytest.raises(GraphAPIError) as exc_info:
                await client.get_meeting("m-1", ApplicationAuth(organizer_id="org-1"))

        assert exc_info.value.status_code == 200
        assert exc_info.value.message == "Unexpected Graph response"

    @pytest.mark.asyncio
    async def test_transcript_item_without_id_becomes_graph_api_error(self):
        client, http, _ = _make_client(
            lambda request: httpx.Response(200, json={"value": [{"createdDateTime": "2024-01-15T09:20:00Z"}]})
        )
        async with http:
            with pytest.raises(GraphAPIError) as exc_info:
                await client.list_transcripts("m-1", ApplicationAuth(organizer_id="org-1"))

        assert exc_info.value.message == "Unexpected Graph response"
        assert exc_info.value.path == "/users/org-1/onlineMeetings/m-1/transcripts"


class TestTranscriptContent:
    """Content endpoint variant selection."""

    @pytest.mark.asyncio
    async def test_requests_vtt_and_returns_text_content(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=VTT, headers={"content-type": "text/vtt"})

        client, http, _ = _make_client(handler)
        async with http:
            content = await client.get_transcript_content("m-1", "t-1", ApplicationAuth(organizer_id="org-1"))

        assert seen[0].headers["Accept"] == "text/vtt"
        assert seen[0].url.path == "/v1.0/users/org-1/onlineMeetings/m-1/transcripts/t-1/content"
        assert isinstance(content, TextContent)
        assert await read_content(content) == VTT

    @pytest.mark.asyncio
    async def test_binary_response_returns_bytes_content(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=VTT.encode("utf-8"),
                headers={"content-type": "application/octet-stream"},
            )

        client, http, _ = _make_client(handler)
        async with http:
            content = await client.get_transcript_content("m-1", "t-1", DelegatedAuth(access_token="t"))

        assert isinstance(content, BytesContent)
        assert await read_content(content) == VTT

    @pytest.mark.asyncio
    async def test_chunked_response_returns_byte_stream(self):
        async def chunks():
            yield b"WEBVTT\n\n00:00:05.000 --> 00:00:10.000\n"
            yield b"<v John Smith>Hello</v>\n"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=chunks(),
                headers={"content-type": "application/octet-stream", "transfer-encoding": "chunked"},
            )

        client, http, _ = _make_client(handler)
        async with http:
            content = await client.get_transcript_content("m-1", "t-1", DelegatedAuth(access_token="t"))
            assert isinstance(content, ByteStreamContent)
            assert await read_content(content) == VTT

    @pytest.mark.asyncio
    async def test_content_error_raises_graph_api_error(self):
        client, http, _ = _make_client(lambda request: httpx.Response(404, json={"error": {"code": "NotFound"}}))
        async with http:
            with pytest.raises(GraphAPIError) as exc_info:
                await client.get_transcript_content("m-1", "t-1", DelegatedAuth(access_token="t"))

        assert exc_info.value.is_not_found


class TestReadContent:
    """Normalization of every content variant to text."""

    @pytest.mark.asyncio
    async def test_push_style_stream_is_drained_and_closed(self):
        closed = []

        async def close() -> None:
            closed.append(True)

        async def chunks():
            for part in (b"WEB", b"VTT", "\né".encode("utf-8")):
                yield part

        text = await read_content(ByteStreamContent(chunks=chunks(), close=close))

        assert text == "WEBVTT\né"
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_multibyte_character_split_across_chunks(self):
        encoded = "café".encode("utf-8")
        content = ByteStreamContent.from_iterable([encoded[:4], encoded[4:]])

        assert await read_content(content) == "café"

    @pytest.mark.asyncio
    async def test_stream_closed_when_iteration_fails(self):
        closed = []

        async def close() -> None:
            closed.append(True)

        async def broken():
            yield b"partial"
            raise httpx.ReadError("connection reset")

        with pytest.raises(httpx.ReadError):
            await read_content(ByteStreamContent(chunks=broken(), close=close))

        assert closed == [True]

    @pytest.mark.asyncio
    async def test_unknown_variant_rejected(self):
        with pytest.raises(TypeError):
            await read_content("plain string")  # type: ignore[arg-type]
