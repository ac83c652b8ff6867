"""WebVTT caption-track parser for Teams meeting transcripts.

Teams exports transcripts as WebVTT where each cue carries one speaker-tagged
line::

    WEBVTT

    00:00:05.000 --> 00:00:10.000
    <v John Smith>Good morning everyone, let's start the daily standup.</v>

    00:00:10.500 --> 00:00:18.000
    <v Sarah Johnson>I worked on the authentication feature yesterday.</v>

Each cue has exactly one payload line. Cues without a ``<v ...>`` voice tag
are kept with an ``Unknown`` speaker rather than dropped.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from src.mombot.transcripts.errors import MalformedTranscriptError
from src.mombot.transcripts.schemas import UNKNOWN_SPEAKER, TranscriptEntry

logger = structlog.get_logger(__name__)

VTT_HEADER = "WEBVTT"

_CUE_TIME = r"\d+:\d+(?::\d+)?\.\d+"

# "start --> end", optionally followed by cue settings (align:start etc.)
CUE_TIMING_RE = re.compile(rf"^({_CUE_TIME})\s+-->\s+({_CUE_TIME})(?:\s+.*)?$")

# <v Speaker Name>spoken text</v>
SPEAKER_SPAN_RE = re.compile(r"<v\s+([^>]+)>([^<]*)</v>")

# Only CRLF and LF end lines; other Unicode breaks stay inside the payload
LINE_BREAK_RE = re.compile(r"\r?\n")


def _coerce_to_text(content: Any) -> str:
    """Turn whatever the transport handed us into text.

    A JSON error body decoded by an HTTP client is serialized instead of
    rejected so it flows through the parser (and yields no cues).
    """
    if isinstance(content, str):
        return content
    if isinstance(content, (bytes, bytearray)):
        return bytes(content).decode("utf-8")
    if isinstance(content, (dict, list)):
        logger.debug("vtt.content_is_json", preview=json.dumps(content)[:500])
        return json.dumps(content)
    return str(content)


def _is_header(line: str) -> bool:
    line = line.lstrip("\ufeff")
    return line == VTT_HEADER or line.startswith(VTT_HEADER + " ") or line.startswith(VTT_HEADER + "\t")


def parse_vtt(content: Any) -> list[TranscriptEntry]:
    """Parse WebVTT text into ordered transcript entries.

    Args:
        content: Raw caption-track content. Usually ``str``; bytes are
            decoded as UTF-8 and other objects are serialized first.

    Returns:
        Entries in source order, one per cue that has a payload line.

    Raises:
        MalformedTranscriptError: If the content cannot be turned into
            iterable text (e.g. bytes that are not UTF-8). Individual
            malformed cues never raise.
    """
    try:
        text = _coerce_to_text(content)
        lines = [line.strip() for line in LINE_BREAK_RE.split(text)]
        lines = [line for line in lines if line]

        index = 1 if lines and _is_header(lines[0]) else 0
        entries: list[TranscriptEntry] = []

        while index < len(lines):
            match = CUE_TIMING_RE.match(lines[index])
            if match is None or index + 1 >= len(lines):
                index += 1
                continue

            payload = lines[index + 1]
            speaker_match = SPEAKER_SPAN_RE.search(payload)
            if speaker_match:
                entries.append(
                    TranscriptEntry(
                        timestamp=match.group(1),
                        speaker=speaker_match.group(1).strip(),
                        text=speaker_match.group(2).strip(),
                    )
                )
            else:
                entries.append(
                    TranscriptEntry(
                        timestamp=match.group(1),
                        speaker=UNKNOWN_SPEAKER,
                        text=payload,
                    )
                )
            index += 2
    except (TypeError, ValueError) as exc:
        # UnicodeDecodeError is a ValueError
        logger.error("vtt.parse_failed", error=str(exc), exc_info=True)
        raise MalformedTranscriptError() from exc

    logger.info("vtt.parsed", entry_count=len(entries), line_count=len(lines))
    return entries


def to_vtt(entries: list[TranscriptEntry]) -> str:
    """Serialize entries back into WebVTT cues.

    The end time of a cue is the start of the following one (the last cue
    ends where it starts). Entries with the ``Unknown`` speaker are written
    without a voice tag so that parsing the output gives the same entries,
    unless their text is empty: a blank payload line would be dropped.
    """
    blocks = [VTT_HEADER]
    for position, entry in enumerate(entries):
        end = entries[position + 1].timestamp if position + 1 < len(entries) else entry.timestamp
        if entry.speaker == UNKNOWN_SPEAKER and entry.text:
            payload = entry.text
        else:
            payload = f"<v {entry.speaker}>{entry.text}</v>"
        blocks.append(f"{entry.timestamp} --> {end}\n{payload}")
    return "\n\n".join(blocks) + "\n"


def parse_timestamp_to_seconds(timestamp: str) -> float:
    """Convert ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` to seconds (0.0 otherwise)."""
    parts = timestamp.split(":")
    try:
        if len(parts) == 3:
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
        if len(parts) == 2:
            return int(parts[0]) * 60 + float(parts[1])
    except ValueError:
        return 0.0
    return 0.0


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``MM:SS``."""
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes:02d}:{secs:02d}"


def group_by_speaker(entries: list[TranscriptEntry]) -> list[dict[str, Any]]:
    """Group statements per speaker, speakers in order of first appearance."""
    grouped: dict[str, list[str]] = {}
    for entry in entries:
        grouped.setdefault(entry.speaker, []).append(entry.text)
    return [
        {"speaker": speaker, "statements": statements}
        for speaker, statements in grouped.items()
    ]
