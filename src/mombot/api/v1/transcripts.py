"""Manual transcript endpoints.

POST /transcript/fetch supports both authorization modes:

- Delegated, when the request carries ``Authorization: Bearer <graph token>``:
  the caller's own meetings, by ``meetingId`` or Teams ``joinUrl``.
- Application otherwise: any organizer's meeting, ``meetingId`` and
  ``organizerId`` both required.

Domain and Graph errors are turned into HTTP responses by the exception
handlers registered in ``src.mombot.main``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

import structlog

from src.mombot.api.deps import get_delegated_auth, get_discovery
from src.mombot.graph.auth import ApplicationAuth, AuthContext, DelegatedAuth
from src.mombot.graph.client import GraphAPIError
from src.mombot.transcripts.discovery import TranscriptDiscovery
from src.mombot.transcripts.schemas import CanonicalTranscript

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["transcripts"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class TranscriptFetchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    meeting_id: str | None = Field(None, alias="meetingId")
    join_url: str | None = Field(None, alias="joinUrl")
    organizer_id: str | None = Field(None, alias="organizerId")


class OrganizerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    organizer_id: str | None = Field(None, alias="organizerId")


class TranscriptFetchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    auth_mode: str = Field(alias="authMode")
    data: CanonicalTranscript


class TranscriptStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    meeting_id: str = Field(alias="meetingId")
    available: bool
    auth_mode: str = Field(alias="authMode")


# ── Helpers ──────────────────────────────────────────────────────────────────


def _meeting_summary(meeting: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": meeting.get("id"),
        "subject": meeting.get("subject"),
        "startDateTime": meeting.get("startDateTime"),
        "endDateTime": meeting.get("endDateTime"),
        "joinUrl": meeting.get("joinWebUrl"),
    }


async def _fetch(
    discovery: TranscriptDiscovery,
    meeting_id: str,
    auth: AuthContext,
) -> TranscriptFetchResponse:
    logger.info("transcript.manual_trigger", meeting_id=meeting_id, auth_mode=auth.mode)
    transcript = await discovery.fetch_transcript(meeting_id, auth)
    credentials = "your credentials" if isinstance(auth, DelegatedAuth) else "app credentials"
    return TranscriptFetchResponse(
        message=f"Transcript fetched successfully (using {credentials})",
        auth_mode=auth.mode,
        data=transcript,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/transcript/fetch", response_model=TranscriptFetchResponse)
async def fetch_transcript(
    body: TranscriptFetchRequest,
    delegated: DelegatedAuth | None = Depends(get_delegated_auth),
    discovery: TranscriptDiscovery = Depends(get_discovery),
) -> TranscriptFetchResponse:
    """Fetch and normalize a meeting transcript on demand."""
    if delegated is not None:
        if not body.meeting_id and not body.join_url:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Either meetingId or joinUrl is required",
            )
        meeting_id = body.meeting_id
        if not meeting_id:
            meeting = await discovery.resolve_join_url(body.join_url, delegated)
            meeting_id = meeting["id"]
        return await _fetch(discovery, meeting_id, delegated)

    if not body.meeting_id or not body.organizer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "Both meetingId and organizerId are required (app permissions mode). "
                "Sign in at /auth/login and send a Bearer token to use delegated permissions."
            ),
        )
    return await _fetch(discovery, body.meeting_id, ApplicationAuth(body.organizer_id))


@router.post("/transcript/{meeting_id}", response_model=TranscriptFetchResponse)
async def fetch_transcript_by_id(
    meeting_id: str,
    body: OrganizerRequest,
    discovery: TranscriptDiscovery = Depends(get_discovery),
) -> TranscriptFetchResponse:
    """Application-mode fetch with the meeting id in the path."""
    if not body.organizer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="organizerId is required",
        )
    return await _fetch(discovery, meeting_id, ApplicationAuth(body.organizer_id))


@router.get("/transcript/{meeting_id}/status", response_model=TranscriptStatusResponse)
async def transcript_status(
    meeting_id: str,
    organizer_id: str | None = Query(None, alias="organizerId"),
    delegated: DelegatedAuth | None = Depends(get_delegated_auth),
    discovery: TranscriptDiscovery = Depends(get_discovery),
) -> TranscriptStatusResponse:
    """Whether Graph lists any transcript for the meeting right now."""
    auth: AuthContext
    if delegated is not None:
        auth = delegated
    elif organizer_id:
        auth = ApplicationAuth(organizer_id)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="organizerId query parameter or a Bearer token is required",
        )
    available = await discovery.is_transcript_available(meeting_id, auth)
    return TranscriptStatusResponse(meeting_id=meeting_id, available=available, auth_mode=auth.mode)


@router.get("/meetings")
async def list_meetings(
    join_url: str | None = Query(None, alias="joinUrl"),
    delegated: DelegatedAuth | None = Depends(get_delegated_auth),
    discovery: TranscriptDiscovery = Depends(get_discovery),
) -> dict:
    """Look up the caller's meeting by join URL, or try to list meetings."""
    if delegated is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in at /auth/login and send a Bearer token to access your meetings",
        )

    if join_url:
        meeting = await discovery.resolve_join_url(join_url, delegated)
        return {
            "success": True,
            "meeting": _meeting_summary(meeting),
            "hint": 'Use the "id" field with POST /transcript/fetch to get the transcript',
        }

    try:
        meetings = await discovery.list_meetings(delegated)
    except GraphAPIError as exc:
        if exc.status_code in (401, 403):
            raise
        logger.info("meetings.list_rejected", status_code=exc.status_code, code=exc.code)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "Microsoft Graph requires a filter to query meetings. "
                "Provide a joinUrl query parameter to look up a specific meeting."
            ),
        ) from exc

    return {
        "success": True,
        "count": len(meetings),
        "meetings": [_meeting_summary(m) for m in meetings],
    }
