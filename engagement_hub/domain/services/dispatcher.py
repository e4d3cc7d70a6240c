"""
Event Dispatcher - routes stored webhook events to Celery tasks

Called only after the ingestion transaction has committed, so workers never
see an event id that is not yet visible. Also triggers the "new_*" vendor
notifications according to the vendor's preference flags.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.core.logging import get_logger
from engagement_hub.db.models.social_media_account import SocialMediaAccount
from engagement_hub.db.models.social_media_comment import SocialMediaComment
from engagement_hub.db.models.social_media_mention import SocialMediaMention
from engagement_hub.db.models.social_media_message import SocialMediaMessage
from engagement_hub.db.models.webhook_event import EventType, WebhookEvent
from engagement_hub.domain.event_classifier import ENGAGEMENT_EVENT_TYPES, should_auto_process
from engagement_hub.domain.services.webhook_event_service import WebhookEventService

logger = get_logger(__name__)

NOTIFICATION_TEXT_LIMIT = 100


@dataclass(frozen=True)
class TaskRoute:
    task_name: str
    args: tuple


def truncate(text: str | None, limit: int = NOTIFICATION_TEXT_LIMIT) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def route_event(event: WebhookEvent) -> TaskRoute | None:
    """Pick the worker task for an event; None when it must not be auto-processed"""
    if not should_auto_process(event.event_type, event.priority):
        return None

    event_type = EventType(event.event_type)
    if event_type == EventType.COMMENT and event.subject_id:
        return TaskRoute("process_comment", (event.subject_id, event.id))
    if event_type in (EventType.DIRECT_MESSAGE, EventType.STORY_REPLY) and event.subject_id:
        return TaskRoute("process_message", (event.subject_id, event.id))
    if event_type == EventType.MENTION and event.subject_id:
        return TaskRoute("process_mention", (event.subject_id, event.id))
    if event_type in ENGAGEMENT_EVENT_TYPES:
        return TaskRoute("process_webhook_event", (event.id, "engagement"))
    return TaskRoute("process_webhook_event", (event.id, "general"))


def build_new_item_notification(subject: Any) -> tuple[str, dict[str, Any]] | None:
    """Notification type and data for a freshly ingested comment/mention/message"""
    if isinstance(subject, SocialMediaComment):
        return "new_comment", {
            "comment_id": subject.id,
            "post_id": subject.post_id,
            "commenter": subject.commenter_username,
            "text": truncate(subject.text),
        }
    if isinstance(subject, SocialMediaMention):
        return "new_mention", {
            "mention_id": subject.id,
            "from_user": subject.from_username,
            "mention_type": getattr(subject.mention_type, "value", subject.mention_type),
        }
    if isinstance(subject, SocialMediaMessage):
        return "new_message", {
            "message_id": subject.id,
            "sender_id": subject.sender_id,
            "text": truncate(subject.message_text),
        }
    return None


class EventDispatcher:
    """Enqueue processing for committed webhook events"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = WebhookEventService(db)

    async def dispatch(
        self,
        event: WebhookEvent,
        account: SocialMediaAccount | None = None,
        subject: Any = None,
        notify: bool = True,
    ) -> str | None:
        """
        Enqueue the event's worker task and any "new item" notification.

        Returns the enqueued task name, or None when nothing was enqueued.
        A broker failure is recorded on the event as a failed attempt so the
        retry sweep picks it up later; it is never raised to the caller.
        """
        route = route_event(event)
        if route is None:
            logger.info(
                "Webhook event held for manual review",
                extra_data={
                    "event_id": event.id,
                    "event_type": EventType(event.event_type).value,
                    "priority": getattr(event.priority, "value", event.priority),
                },
            )
            return None

        from engagement_hub.workers import tasks

        try:
            getattr(tasks, route.task_name).delay(*route.args)
        except Exception as e:
            logger.error(
                "Failed to enqueue webhook event",
                extra_data={"event_id": event.id, "task": route.task_name, "error": str(e)},
                exc_info=True,
            )
            await self.events.mark_failed(event.id, f"enqueue failed: {e}")
            return None

        logger.info(
            "Webhook event dispatched",
            extra_data={"event_id": event.id, "task": route.task_name},
        )

        if notify and account is not None and subject is not None:
            self._notify_new_item(account, subject)
        return route.task_name

    def _notify_new_item(self, account: SocialMediaAccount, subject: Any) -> None:
        notification = build_new_item_notification(subject)
        vendor = account.vendor
        if notification is None or vendor is None:
            return
        notification_type, data = notification
        if not vendor.wants_notification(notification_type):
            return

        from engagement_hub.workers import tasks

        try:
            tasks.send_notification.delay(vendor.id, notification_type, data)
        except Exception as e:
            # a lost notification never fails the event itself
            logger.error(
                "Failed to enqueue notification",
                extra_data={"vendor_id": vendor.id, "type": notification_type, "error": str(e)},
            )
