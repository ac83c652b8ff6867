"""Notification intake for Graph online-meeting change notifications.

The webhook endpoint acknowledges a batch before any work starts; each
notification is then handled in its own detached asyncio task. A task
never raises: validation problems, extraction failures and discovery
errors are all logged and the result is dropped (forwarding transcripts to
a consumer is not part of this service).
"""

from __future__ import annotations

import asyncio
import hmac
import re

import structlog

from src.mombot.core.monitoring import webhook_notifications_total
from src.mombot.graph.auth import ApplicationAuth
from src.mombot.transcripts.discovery import TranscriptDiscovery
from src.mombot.transcripts.schemas import CanonicalTranscript
from src.mombot.webhooks.schemas import ChangeNotification, NotificationBatch, ResourceData

logger = structlog.get_logger(__name__)

# Change types that may mean "meeting ended"
FETCH_CHANGE_TYPES = frozenset({"updated", "deleted"})
# change_type label values; anything else is reported as "other"
KNOWN_CHANGE_TYPES = frozenset({"created", "updated", "deleted"})

DEFAULT_SETTLE_DELAY_SECONDS = 30.0

# .../onlineMeetings/{id} or onlineMeetings('{id}')
_MEETING_ID_RE = re.compile(r"(?:^|/)onlineMeetings(?:/|\(')([^/'()?]+)")
# .../users/{id}/... or users('{id}')
_ORGANIZER_ID_RE = re.compile(r"(?:^|/)users(?:/|\(')([^/'()?]+)")


def change_type_label(change_type: str) -> str:
    return change_type if change_type in KNOWN_CHANGE_TYPES else "other"


def extract_meeting_id(resource: str) -> str | None:
    """Meeting id from a notification ``resource`` path, or None."""
    match = _MEETING_ID_RE.search(resource or "")
    return match.group(1) if match else None


def extract_organizer_id(resource_data: ResourceData) -> str | None:
    """Organizer user id from ``resourceData['@odata.id']``, or None."""
    match = _ORGANIZER_ID_RE.search(resource_data.odata_id or "")
    return match.group(1) if match else None


class NotificationIntake:
    """Dispatches notification batches to background transcript discovery.

    Args:
        discovery: TranscriptDiscovery used in application mode.
        client_state: Expected ``clientState`` secret; empty disables the check.
        settle_delay: Seconds to wait before the first discovery attempt,
            giving Teams time to produce the transcript.
    """

    def __init__(
        self,
        discovery: TranscriptDiscovery,
        client_state: str = "",
        settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS,
    ) -> None:
        self._discovery = discovery
        self._client_state = client_state
        self._settle_delay = max(0.0, settle_delay)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, batch: NotificationBatch) -> list[asyncio.Task]:
        """Schedule one detached task per notification and return immediately."""
        tasks = []
        for notification in batch.value:
            task = asyncio.create_task(
                self.process_notification(notification),
                name=f"notification:{notification.subscription_id or 'unknown'}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
            tasks.append(task)
        logger.info("webhook.batch_dispatched", notification_count=len(tasks))
        return tasks

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("webhook.notification_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "webhook.notification_task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    def _client_state_matches(self, notification: ChangeNotification) -> bool:
        if not self._client_state:
            return True
        received = notification.client_state or ""
        return hmac.compare_digest(received.encode("utf-8"), self._client_state.encode("utf-8"))

    async def process_notification(self, notification: ChangeNotification) -> CanonicalTranscript | None:
        """Handle one notification end to end; never raises."""
        change_type = notification.change_type
        metric_change_type = change_type_label(change_type)
        log = logger.bind(
            subscription_id=notification.subscription_id,
            change_type=change_type,
            resource=notification.resource,
        )
        log.info("webhook.notification_processing")

        if not self._client_state_matches(notification):
            log.warning("webhook.client_state_mismatch")
            webhook_notifications_total.labels(change_type=metric_change_type, outcome="rejected").inc()
            return None

        meeting_id = extract_meeting_id(notification.resource)
        if not meeting_id:
            log.error("webhook.meeting_id_missing")
            webhook_notifications_total.labels(change_type=metric_change_type, outcome="invalid").inc()
            return None

        organizer_id = extract_organizer_id(notification.resource_data)
        if not organizer_id:
            log.error("webhook.organizer_id_missing", odata_id=notification.resource_data.odata_id)
            webhook_notifications_total.labels(change_type=metric_change_type, outcome="invalid").inc()
            return None

        log = log.bind(meeting_id=meeting_id, organizer_id=organizer_id)
        if change_type not in FETCH_CHANGE_TYPES:
            log.info("webhook.change_type_ignored")
            webhook_notifications_total.labels(change_type=metric_change_type, outcome="ignored").inc()
            return None

        log.info("webhook.settling", delay_seconds=self._settle_delay)
        await asyncio.sleep(self._settle_delay)

        try:
            transcript = await self._discovery.fetch_transcript(meeting_id, ApplicationAuth(organizer_id))
        except Exception as exc:
            log.error("webhook.transcript_fetch_failed", error=str(exc), error_type=type(exc).__name__)
            webhook_notifications_total.labels(change_type=metric_change_type, outcome="failed").inc()
            return None

        webhook_notifications_total.labels(change_type=metric_change_type, outcome="fetched").inc()
        log.info(
            "webhook.transcript_fetched",
            title=transcript.meeting_title,
            entry_count=len(transcript.transcript),
        )
        log.debug("webhook.transcript_data", transcript=transcript.model_dump(by_alias=True, mode="json"))
        return transcript

    async def drain(self) -> None:
        """Wait for every in-flight notification task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks; used when the application stops."""
        tasks = list(self._tasks)
        if tasks:
            logger.info("webhook.cancelling_pending", pending=len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
