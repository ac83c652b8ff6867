"""Build the canonical transcript record from Graph meeting metadata.

Graph ``onlineMeeting`` payloads are treated as untrusted: any field may be
missing or of the wrong type, and every accessor here falls back to a fixed
value instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from src.mombot.transcripts.schemas import (
    UNKNOWN_EMAIL,
    UNKNOWN_NAME,
    UNTITLED,
    Attendee,
    CanonicalTranscript,
    MeetingType,
    TranscriptEntry,
)

logger = structlog.get_logger(__name__)


def classify_meeting(title: str) -> MeetingType:
    """Classify a meeting by keywords in its title.

    Rules are checked in order and the first match wins, so
    "Daily Tech Refinement" is a daily.
    """
    lowered = (title or "").lower()

    if "daily" in lowered or "standup" in lowered:
        return MeetingType.DAILY
    if "tech" in lowered and "refinement" in lowered:
        return MeetingType.TECH_REFINEMENT
    if "product" in lowered and "refinement" in lowered:
        return MeetingType.PRODUCT_REFINEMENT
    return MeetingType.OTHER


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_duration(start: Any, end: Any) -> int:
    """Meeting length in whole minutes, rounded half up.

    Missing or unparseable timestamps give 0. An end before the start is
    clamped to 0.
    """
    start_dt = _parse_datetime(start)
    end_dt = _parse_datetime(end)
    if start_dt is None or end_dt is None:
        logger.warning("normalizer.duration_unavailable", start=start, end=end)
        return 0

    duration_ms = (end_dt - start_dt).total_seconds() * 1000
    minutes = math.floor(duration_ms / 60000 + 0.5)
    if minutes < 0:
        logger.warning("normalizer.negative_duration", start=start, end=end, minutes=minutes)
        return 0
    return minutes


def normalize_attendees(meeting: Mapping[str, Any]) -> list[Attendee]:
    """Map ``participants.attendees[].emailAddress`` records to attendees.

    Records without an ``emailAddress`` object are dropped.
    """
    participants = meeting.get("participants")
    if not isinstance(participants, Mapping):
        return []
    records = participants.get("attendees")
    if not isinstance(records, Sequence) or isinstance(records, str):
        return []

    attendees: list[Attendee] = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        email_address = record.get("emailAddress")
        if not isinstance(email_address, Mapping):
            continue
        name = email_address.get("name") or None
        address = email_address.get("address") or None
        attendees.append(
            Attendee(
                name=str(name or address or UNKNOWN_NAME),
                email=str(address or UNKNOWN_EMAIL),
            )
        )
    return attendees


def build_transcript(
    meeting: Mapping[str, Any],
    entries: Sequence[TranscriptEntry],
    meeting_id: str | None = None,
) -> CanonicalTranscript:
    """Combine meeting metadata and parsed entries into a CanonicalTranscript.

    Args:
        meeting: Raw Graph ``onlineMeeting`` object.
        entries: Parsed caption-track entries, in source order.
        meeting_id: Identifier the caller used to look the meeting up.
            Falls back to the metadata ``id``.
    """
    subject = meeting.get("subject")
    title = subject if isinstance(subject, str) and subject.strip() else UNTITLED
    start = meeting.get("startDateTime")
    end = meeting.get("endDateTime")

    transcript = CanonicalTranscript(
        meeting_id=meeting_id or str(meeting.get("id") or ""),
        meeting_title=title,
        meeting_type=classify_meeting(title),
        date=start if isinstance(start, str) else "",
        duration=calculate_duration(start, end),
        attendees=normalize_attendees(meeting),
        transcript=list(entries),
    )

    logger.info(
        "normalizer.transcript_built",
        meeting_id=transcript.meeting_id,
        meeting_type=transcript.meeting_type.value,
        duration=transcript.duration,
        attendee_count=len(transcript.attendees),
        entry_count=len(transcript.transcript),
    )
    return transcript
