"""Domain errors raised by the transcript pipeline.

Transport failures are not wrapped here: ``GraphAPIError`` and
``httpx.HTTPError`` reach the caller unchanged.
"""

from __future__ import annotations

TRANSCRIPT_NOT_AVAILABLE_HINT = (
    "Transcript not available. Possible reasons:\n"
    "1. Transcription was not enabled for this meeting\n"
    "2. The meeting just ended and the transcript is still processing "
    "(try again in a few minutes)\n"
    "3. You do not have permission to access the transcript"
)


class TranscriptError(Exception):
    """Base class for transcript pipeline failures."""


class MeetingNotFoundError(TranscriptError):
    """The meeting does not exist or is not visible to the caller."""

    def __init__(self, meeting_id: str, message: str = "Meeting not found") -> None:
        self.meeting_id = meeting_id
        super().__init__(message)


class TranscriptNotAvailableError(TranscriptError):
    """No transcript artifact could be obtained for the meeting."""

    def __init__(self, meeting_id: str, message: str = TRANSCRIPT_NOT_AVAILABLE_HINT) -> None:
        self.meeting_id = meeting_id
        super().__init__(message)


class MalformedTranscriptError(TranscriptError):
    """The caption-track content could not be processed as text at all."""

    def __init__(
        self,
        message: str = "Failed to parse transcript. The VTT format may be malformed.",
    ) -> None:
        super().__init__(message)
