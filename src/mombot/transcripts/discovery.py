"""Transcript discovery: meeting identity in, CanonicalTranscript out.

Each call walks the same states, under either auth mode::

    fetching-metadata -> polling-transcripts -> fetching-content
        -> parsing -> normalizing -> done

``polling-transcripts`` loops up to ``max_attempts`` times, sleeping
``retry_delay`` seconds between empty listings, because Teams publishes the
transcript some time after the meeting ends. Nothing is kept between calls;
concurrent calls for the same meeting simply repeat the work.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_fixed

from src.mombot.core.monitoring import transcript_fetch_total, transcript_poll_attempts
from src.mombot.graph.auth import AuthContext, DelegatedAuth
from src.mombot.graph.client import GraphAPIError, GraphClient
from src.mombot.graph.content import read_content
from src.mombot.transcripts.errors import (
    MalformedTranscriptError,
    MeetingNotFoundError,
    TranscriptError,
    TranscriptNotAvailableError,
)
from src.mombot.transcripts.normalizer import build_transcript
from src.mombot.transcripts.schemas import CanonicalTranscript, TranscriptMetadata
from src.mombot.transcripts.vtt import parse_vtt

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 10.0


def _is_empty(transcripts: list[TranscriptMetadata]) -> bool:
    return not transcripts


class TranscriptDiscovery:
    """Resolves a meeting to its parsed, normalized transcript.

    Args:
        graph: GraphClient used for all remote calls.
        max_attempts: Transcript listings before giving up (>= 1).
        retry_delay: Seconds to wait between empty listings.
    """

    def __init__(
        self,
        graph: GraphClient,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        self._graph = graph
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = max(0.0, retry_delay)

    async def fetch_transcript(self, meeting_id: str, auth: AuthContext) -> CanonicalTranscript:
        """Fetch, parse and normalize the transcript for ``meeting_id``.

        Raises:
            MeetingNotFoundError: Graph reports the meeting as missing.
            TranscriptNotAvailableError: No transcript after all attempts,
                or its content is missing.
            MalformedTranscriptError: The content is not processable text.
            GraphAPIError / httpx.HTTPError: Any other transport failure.
        """
        log = logger.bind(meeting_id=meeting_id, auth_mode=auth.mode)
        log.info("transcript.fetch_started")

        try:
            meeting = await self._get_meeting(meeting_id, auth)
            transcripts = await self._poll_transcripts(meeting_id, auth)

            if len(transcripts) > 1:
                # First element is taken as-is; Graph does not promise an order.
                log.info("transcript.multiple_available", transcript_count=len(transcripts))
            selected = transcripts[0]

            vtt_text = await self._get_content(meeting_id, selected, auth)
            entries = parse_vtt(vtt_text)
            transcript = build_transcript(meeting, entries, meeting_id=meeting_id)
        except TranscriptError as exc:
            transcript_fetch_total.labels(auth_mode=auth.mode, outcome=type(exc).__name__).inc()
            log.warning("transcript.fetch_failed", error=str(exc), error_type=type(exc).__name__)
            raise
        except Exception as exc:
            transcript_fetch_total.labels(auth_mode=auth.mode, outcome="transport_error").inc()
            log.error("transcript.fetch_failed", error=str(exc), error_type=type(exc).__name__)
            raise

        transcript_fetch_total.labels(auth_mode=auth.mode, outcome="success").inc()
        log.info(
            "transcript.fetch_completed",
            title=transcript.meeting_title,
            meeting_type=transcript.meeting_type.value,
            duration=transcript.duration,
            attendee_count=len(transcript.attendees),
            entry_count=len(transcript.transcript),
        )
        return transcript

    async def is_transcript_available(self, meeting_id: str, auth: AuthContext) -> bool:
        """Single listing without retries; any failure counts as unavailable."""
        try:
            return bool(await self._list_transcripts(meeting_id, auth))
        except Exception:
            logger.warning(
                "transcript.availability_check_failed",
                meeting_id=meeting_id,
                auth_mode=auth.mode,
                exc_info=True,
            )
            return False

    async def resolve_join_url(self, join_url: str, auth: DelegatedAuth) -> dict[str, Any]:
        """Resolve a Teams join URL to the caller's onlineMeeting object."""
        meeting = await self._graph.find_meeting_by_join_url(join_url, auth)
        if not meeting or not meeting.get("id"):
            raise MeetingNotFoundError(join_url, "No meeting found for the given join URL")
        logger.info("transcript.join_url_resolved", meeting_id=meeting.get("id"))
        return meeting

    async def list_meetings(self, auth: DelegatedAuth) -> list[dict[str, Any]]:
        """List the caller's meetings (Graph may refuse without a filter)."""
        return await self._graph.list_meetings(auth)

    # ── Steps ────────────────────────────────────────────────────────────────

    async def _get_meeting(self, meeting_id: str, auth: AuthContext) -> dict[str, Any]:
        try:
            return await self._graph.get_meeting(meeting_id, auth)
        except GraphAPIError as exc:
            if exc.is_not_found:
                raise MeetingNotFoundError(meeting_id) from exc
            raise

    async def _list_transcripts(self, meeting_id: str, auth: AuthContext) -> list[TranscriptMetadata]:
        try:
            return await self._graph.list_transcripts(meeting_id, auth)
        except GraphAPIError as exc:
            if exc.is_not_found:
                # The sub-resource may not exist yet right after the meeting ends
                logger.warning("transcript.list_not_found", meeting_id=meeting_id)
                return []
            raise

    async def _poll_transcripts(self, meeting_id: str, auth: AuthContext) -> list[TranscriptMetadata]:
        attempts = 0

        async def _attempt() -> list[TranscriptMetadata]:
            nonlocal attempts
            attempts += 1
            return await self._list_transcripts(meeting_id, auth)

        def _before_sleep(state: RetryCallState) -> None:
            logger.info(
                "transcript.not_ready_retrying",
                meeting_id=meeting_id,
                attempt=state.attempt_number,
                max_attempts=self._max_attempts,
                delay_seconds=self._retry_delay,
            )

        def _give_up(state: RetryCallState) -> list[TranscriptMetadata]:
            transcript_poll_attempts.observe(attempts)
            raise TranscriptNotAvailableError(meeting_id)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_delay),
            sleep=asyncio.sleep,
            retry=retry_if_result(_is_empty),
            before_sleep=_before_sleep,
            retry_error_callback=_give_up,
        )
        transcripts = await retrying(_attempt)
        transcript_poll_attempts.observe(attempts)
        return transcripts

    async def _get_content(self, meeting_id: str, selected: TranscriptMetadata, auth: AuthContext) -> str:
        try:
            content = await self._graph.get_transcript_content(meeting_id, selected.id, auth)
        except GraphAPIError as exc:
            if exc.is_not_found:
                raise TranscriptNotAvailableError(meeting_id, "Transcript content not available") from exc
            raise
        try:
            text = await read_content(content)
        except UnicodeDecodeError as exc:
            raise MalformedTranscriptError() from exc
        logger.info(
            "transcript.content_retrieved",
            meeting_id=meeting_id,
            transcript_id=selected.id,
            content_variant=type(content).__name__,
            length=len(text),
        )
        return text
