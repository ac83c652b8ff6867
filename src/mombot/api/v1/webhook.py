"""Microsoft Graph webhook endpoint.

GET  /webhook?validationToken=...  -> subscription validation handshake
POST /webhook?validationToken=...  -> same handshake (Graph sends it as POST)
POST /webhook                      -> change notification batch

A notification batch is acknowledged with 202 before any transcript work
starts; processing continues in background tasks owned by
NotificationIntake. Processing errors never reach Graph.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

import structlog

from src.mombot.api.deps import get_notification_intake
from src.mombot.webhooks.schemas import NotificationBatch

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhook"])


def _validation_response(validation_token: str | None) -> Response:
    if not validation_token:
        logger.warning("webhook.validation_token_missing")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing validation token"},
        )
    logger.info("webhook.validation_succeeded")
    return PlainTextResponse(content=validation_token, status_code=status.HTTP_200_OK)


@router.get("/webhook")
async def validate_subscription(
    validation_token: str | None = Query(None, alias="validationToken"),
) -> Response:
    """Echo the subscription validation token back as text/plain."""
    return _validation_response(validation_token)


@router.post("/webhook")
async def receive_notifications(
    request: Request,
    validation_token: str | None = Query(None, alias="validationToken"),
) -> Response:
    """Accept a change notification batch and process it in the background."""
    if validation_token is not None:
        return _validation_response(validation_token)

    try:
        payload = await request.json()
        batch = NotificationBatch.model_validate(payload)
    except ValueError:
        # Bad JSON and pydantic ValidationError are both ValueErrors
        batch = None

    if batch is None or not batch.value:
        logger.warning("webhook.invalid_payload")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid notification payload"},
        )

    intake = get_notification_intake(request)
    logger.info("webhook.notifications_received", notification_count=len(batch.value))
    intake.submit(batch)

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"message": "Notification received"},
    )
