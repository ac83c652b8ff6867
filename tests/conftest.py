"""Shared fixtures for transcript service tests.

Provides:
- Settings isolated from the developer's .env file
- Sample Teams WebVTT content and Graph onlineMeeting payloads
- A mocked GraphClient whose methods are AsyncMocks
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.mombot.config import Settings
from src.mombot.graph.content import TextContent
from src.mombot.transcripts.schemas import TranscriptMetadata

SAMPLE_VTT = """WEBVTT

00:00:05.000 --> 00:00:10.000
<v John Smith>Good morning everyone, let's start the daily standup.</v>

00:00:10.500 --> 00:00:18.000
<v Sarah Johnson>I worked on the authentication feature yesterday.</v>

00:00:18.500 --> 00:00:25.000
<v Mike Chen>Today I'll be reviewing pull requests.</v>
"""


def make_settings(**overrides) -> Settings:
    """Settings built only from defaults and the given overrides."""
    values = {
        "AZURE_TENANT_ID": "tenant-123",
        "AZURE_CLIENT_ID": "client-123",
        "AZURE_CLIENT_SECRET": "secret-123",
        "OAUTH_STATE_SECRET": "test-state-secret",
        "TRANSCRIPT_RETRY_DELAY_SECONDS": 0.0,
        "NOTIFICATION_SETTLE_DELAY_SECONDS": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_meeting(**overrides) -> dict:
    """Graph onlineMeeting payload for a 15 minute daily standup."""
    meeting = {
        "id": "meeting-123",
        "subject": "Daily Standup",
        "startDateTime": "2026-02-04T09:00:00Z",
        "endDateTime": "2026-02-04T09:15:00Z",
        "joinWebUrl": "https://teams.microsoft.com/l/meetup-join/abc",
        "participants": {
            "organizer": {"identity": {"user": {"id": "organizer-1"}}},
            "attendees": [
                {"emailAddress": {"name": "John Smith", "address": "john@example.com"}},
                {"emailAddress": {"name": "Sarah Johnson", "address": "sarah@example.com"}},
            ],
        },
    }
    meeting.update(overrides)
    return meeting


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def meeting() -> dict:
    return make_meeting()


@pytest.fixture
def meeting_factory():
    return make_meeting


@pytest.fixture
def sample_vtt() -> str:
    return SAMPLE_VTT


@pytest.fixture
def mock_graph() -> MagicMock:
    """GraphClient double returning a meeting with one ready transcript."""
    graph = MagicMock()
    graph.get_meeting = AsyncMock(return_value=make_meeting())
    graph.list_transcripts = AsyncMock(return_value=[TranscriptMetadata(id="transcript-1")])
    graph.get_transcript_content = AsyncMock(return_value=TextContent(text=SAMPLE_VTT))
    graph.find_meeting_by_join_url = AsyncMock(return_value=None)
    graph.list_meetings = AsyncMock(return_value=[])
    graph.get_me = AsyncMock(return_value={"id": "user-1", "mail": "user@example.com"})
    graph.get_organization = AsyncMock(return_value={"value": [{"id": "tenant-123"}]})
    return graph
