"""Pydantic v2 schemas for the transcript acquisition domain.

Defines the canonical output record handed to downstream consumers, its
attendee and entry sub-records, and the transcript metadata returned by
Microsoft Graph. Every model is frozen: records are built once per request
and never mutated afterwards.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_SPEAKER = "Unknown"
UNKNOWN_NAME = "Unknown"
UNKNOWN_EMAIL = "unknown@unknown.invalid"
UNTITLED = "Untitled"


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingType(str, Enum):
    """Meeting classification derived from the meeting title."""

    DAILY = "daily"
    TECH_REFINEMENT = "tech-refinement"
    PRODUCT_REFINEMENT = "product-refinement"
    OTHER = "other"


# ── Output Records ───────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class TranscriptEntry(_CamelModel):
    """A single spoken cue from the caption track.

    ``timestamp`` is the cue start time exactly as written in the source
    (``HH:MM:SS.mmm`` or ``MM:SS.mmm``). Use
    ``parse_timestamp_to_seconds`` when a number is needed.
    """

    timestamp: str
    speaker: str = UNKNOWN_SPEAKER
    text: str = ""


class Attendee(_CamelModel):
    """A meeting attendee. ``email`` is never empty."""

    name: str = UNKNOWN_NAME
    email: str = UNKNOWN_EMAIL


class CanonicalTranscript(_CamelModel):
    """Normalized transcript record, independent of Graph's native schemas."""

    meeting_id: str
    meeting_title: str = UNTITLED
    meeting_type: MeetingType = MeetingType.OTHER
    date: str = Field(default="", description="Meeting start, ISO 8601")
    duration: int = Field(default=0, ge=0, description="Duration in whole minutes")
    attendees: list[Attendee] = Field(default_factory=list)
    transcript: list[TranscriptEntry] = Field(default_factory=list)


# ── Graph Input Records ──────────────────────────────────────────────────────


class TranscriptMetadata(_CamelModel):
    """One element of the Graph ``onlineMeeting/transcripts`` collection.

    Graph returns more fields (``meetingId``, ``transcriptContentUrl``...);
    they are ignored.
    """

    id: str
    created_date_time: str | None = None
    meeting_organizer_id: str | None = None
