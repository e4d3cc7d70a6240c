"""
Webhook Ingestion Service

Turns a verified Instagram/Facebook webhook payload into stored events and
the comment/mention/message rows derived from them.

Every change is written inside its own savepoint: a failing change is
rolled back alone and replaced by an ``error`` event, its siblings are kept.
Each entry gets an outer savepoint too, so an entry that fails as a whole
is skipped without losing the other entries of the delivery.
Dispatch to the workers happens only after the whole payload is committed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.core.exceptions import MalformedPayloadError
from engagement_hub.core.logging import bind_event_context, get_logger
from engagement_hub.db.compat import utcnow
from engagement_hub.db.models.social_media_account import (
    AccountStatus,
    SocialMediaAccount,
    SocialPlatform,
)
from engagement_hub.db.models.social_media_comment import SocialMediaComment
from engagement_hub.db.models.social_media_mention import SocialMediaMention
from engagement_hub.db.models.social_media_message import MessageType, SocialMediaMessage
from engagement_hub.db.models.social_media_post import SocialMediaPost
from engagement_hub.db.models.webhook_event import EventType, WebhookEvent
from engagement_hub.domain import sentiment
from engagement_hub.domain.event_classifier import (
    ClassifiedChange,
    classify_change,
    classify_message,
)
from engagement_hub.domain.services.dispatcher import EventDispatcher
from engagement_hub.domain.services.webhook_event_service import WebhookEventService

logger = get_logger(__name__)


@dataclass
class IngestedEvent:
    event: WebhookEvent
    account: SocialMediaAccount
    subject: Any = None
    is_new: bool = True


@dataclass
class IngestionResult:
    events: list[IngestedEvent] = field(default_factory=list)
    skipped_entries: int = 0
    dispatched: list[str] = field(default_factory=list)

    @property
    def event_count(self) -> int:
        return len(self.events)


def entry_time(raw: Any) -> datetime:
    """Webhook ``time`` (unix seconds, sometimes milliseconds) as naive UTC"""
    if raw is None:
        return utcnow()
    try:
        seconds = float(raw)
        if seconds > 1e11:
            seconds /= 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        # out of range, inf and nan included
        return utcnow()


def _user(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _items(entry: dict[str, Any], key: str) -> list[Any]:
    value = entry.get(key)
    if not value:
        return []
    if not isinstance(value, list):
        logger.warning(
            "Skipping non-list webhook entry field",
            extra_data={"platform_account_id": entry.get("id"), "field": key, "type": type(value).__name__},
        )
        return []
    return value


def _follower_count(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


class WebhookIngestionService:
    """Persist a webhook payload and hand the new events to the dispatcher"""

    def __init__(self, db: AsyncSession, dispatcher: EventDispatcher | None = None):
        self.db = db
        self.events = WebhookEventService(db)
        self.dispatcher = dispatcher or EventDispatcher(db)

    async def process_payload(self, payload: dict[str, Any], dispatch: bool = True) -> IngestionResult:
        if not isinstance(payload, dict):
            raise MalformedPayloadError("payload must be a JSON object")

        result = IngestionResult()
        entries = payload.get("entry") or []
        if not isinstance(entries, list):
            raise MalformedPayloadError("'entry' must be a list")

        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning("Skipping non-object webhook entry")
                result.skipped_entries += 1
                continue
            try:
                async with self.db.begin_nested():
                    ingested = await self.process_entry(entry)
            except Exception as e:
                logger.error(
                    "Failed to ingest webhook entry",
                    extra_data={"platform_account_id": entry.get("id"), "error": str(e)},
                    exc_info=True,
                )
                result.skipped_entries += 1
                continue
            if ingested is None:
                result.skipped_entries += 1
            else:
                result.events.extend(ingested)

        await self.db.commit()

        if dispatch:
            for item in result.events:
                task_name = await self.dispatcher.dispatch(
                    item.event, item.account, item.subject, notify=item.is_new,
                )
                if task_name:
                    result.dispatched.append(task_name)

        logger.info(
            "Webhook payload ingested",
            extra_data={
                "object": payload.get("object"),
                "entries": len(entries),
                "events": result.event_count,
                "skipped_entries": result.skipped_entries,
                "dispatched": len(result.dispatched),
            },
        )
        return result

    async def find_account(self, platform_account_id: Any) -> SocialMediaAccount | None:
        if platform_account_id is None:
            return None
        result = await self.db.execute(
            select(SocialMediaAccount).where(
                SocialMediaAccount.platform == SocialPlatform.INSTAGRAM,
                SocialMediaAccount.platform_account_id == str(platform_account_id),
                SocialMediaAccount.status == AccountStatus.ACTIVE,
            )
        )
        return result.unique().scalars().first()

    async def process_entry(self, entry: dict[str, Any]) -> list[IngestedEvent] | None:
        """Returns None when the entry does not belong to a known active account"""
        account = await self.find_account(entry.get("id"))
        if account is None:
            logger.warning(
                "No active account for webhook entry",
                extra_data={"platform_account_id": entry.get("id")},
            )
            return None

        occurred_at = entry_time(entry.get("time"))
        ingested: list[IngestedEvent] = []

        with bind_event_context(account_id=account.id):
            for change in _items(entry, "changes"):
                if not isinstance(change, dict):
                    change = {"value": change}
                ingested.append(await self._guarded(
                    account, change, occurred_at, change.get("field"), self._process_change,
                ))
            for messaging in _items(entry, "messaging"):
                item = await self._guarded(
                    account, messaging, occurred_at, "messaging", self._process_messaging,
                )
                if item is not None:
                    ingested.append(item)
            for mention in _items(entry, "mentions"):
                ingested.append(await self._guarded(
                    account, mention, occurred_at, "mentions", self._process_mention_item,
                ))

        return [item for item in ingested if item is not None]

    async def _guarded(self, account, raw, occurred_at, field_name, handler) -> IngestedEvent | None:
        try:
            async with self.db.begin_nested():
                return await handler(account, raw, occurred_at)
        except Exception as e:
            logger.error(
                "Failed to ingest webhook change",
                extra_data={"account_id": account.id, "field": field_name, "error": str(e)},
                exc_info=True,
            )
            async with self.db.begin_nested():
                event = await self.events.record_error(
                    account_id=account.id,
                    payload=raw if isinstance(raw, dict) else {"raw": raw},
                    error=f"{type(e).__name__}: {e}",
                    field_name=field_name,
                    occurred_at=occurred_at,
                )
            return IngestedEvent(event=event, account=account)

    # ─── changes[] ───────────────────────────────────────────────────────────

    async def _process_change(self, account, change: dict[str, Any], occurred_at) -> IngestedEvent:
        classified = classify_change(change)
        if classified.is_unknown:
            logger.info(
                "Unknown webhook field stored for review",
                extra_data={"account_id": account.id, "field": classified.field_name},
            )

        event = await self.events.record(
            account_id=account.id,
            event_type=classified.event_type,
            payload=classified.value,
            field_name=classified.field_name,
            occurred_at=occurred_at,
        )

        subject, created = None, True
        if classified.event_type == EventType.COMMENT:
            subject, created = await self.upsert_comment(account, classified, occurred_at)
            event.subject_type = "comment"
        elif classified.event_type == EventType.MENTION:
            subject, created = await self.upsert_mention(account, classified.value, occurred_at)
            event.subject_type = "mention"

        if subject is not None:
            event.subject_id = subject.id
            await self.db.flush()
        return IngestedEvent(event=event, account=account, subject=subject, is_new=created)

    async def upsert_comment(
        self,
        account: SocialMediaAccount,
        classified: ClassifiedChange,
        occurred_at: datetime,
    ) -> tuple[SocialMediaComment, bool]:
        """Insert the comment or update the row of an earlier delivery; the flag is True on insert"""
        data = classified.value
        platform_comment_id = data.get("id")
        if not platform_comment_id:
            raise MalformedPayloadError("comment change without an id")
        platform_comment_id = str(platform_comment_id)

        comment = await self._get_comment(account.id, platform_comment_id)
        if comment is None:
            comment = SocialMediaComment(account_id=account.id, platform_comment_id=platform_comment_id)
            self._apply_comment_fields(comment, data, occurred_at, classified.field_name)
            comment.post_id = await self._post_id_for_media(account.id, comment.media_id)
            try:
                async with self.db.begin_nested():
                    self.db.add(comment)
                return comment, True
            except IntegrityError:
                # concurrent delivery inserted it first
                comment = await self._get_comment(account.id, platform_comment_id)
                if comment is None:
                    raise

        self._apply_comment_fields(comment, data, occurred_at, classified.field_name)
        comment.post_id = await self._post_id_for_media(account.id, comment.media_id) or comment.post_id
        await self.db.flush()
        logger.info(
            "Existing comment updated from redelivered webhook",
            extra_data={"comment_id": comment.id, "platform_comment_id": platform_comment_id},
        )
        return comment, False

    async def _get_comment(self, account_id: int, platform_comment_id: str) -> SocialMediaComment | None:
        result = await self.db.execute(
            select(SocialMediaComment).where(
                SocialMediaComment.account_id == account_id,
                SocialMediaComment.platform_comment_id == platform_comment_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply_comment_fields(comment, data: dict[str, Any], occurred_at, field_name) -> None:
        sender = _user(data, "from")
        media = _user(data, "media")
        text = data.get("text")

        comment.text = text
        comment.parent_comment_id = data.get("parent_id")
        comment.media_id = media.get("id") or data.get("media_id")
        comment.commenter_id = sender.get("id")
        comment.commenter_username = sender.get("username")
        comment.commented_at = occurred_at
        comment.sentiment_score = sentiment.comment_sentiment(text)
        comment.detected_language = sentiment.detect_language(text)
        comment.comment_metadata = {
            "raw": data,
            "source_field": field_name,
            **sentiment.extract_mentions_and_hashtags(text),
        }

    async def _post_id_for_media(self, account_id: int, media_id: str | None) -> int | None:
        if not media_id:
            return None
        result = await self.db.execute(
            select(SocialMediaPost.id).where(
                SocialMediaPost.account_id == account_id,
                SocialMediaPost.platform_post_id == str(media_id),
            )
        )
        return result.scalar_one_or_none()

    # ─── mentions ────────────────────────────────────────────────────────────

    async def upsert_mention(
        self,
        account: SocialMediaAccount,
        data: dict[str, Any],
        occurred_at: datetime,
    ) -> tuple[SocialMediaMention, bool]:
        media_id = data.get("media_id")
        comment_id = data.get("comment_id")
        platform_mention_id = data.get("id") or ":".join(
            str(part) for part in (media_id, comment_id) if part
        )
        if not platform_mention_id:
            raise MalformedPayloadError("mention without id, media_id or comment_id")
        platform_mention_id = str(platform_mention_id)

        result = await self.db.execute(
            select(SocialMediaMention).where(
                SocialMediaMention.account_id == account.id,
                SocialMediaMention.platform_mention_id == platform_mention_id,
            )
        )
        mention = result.scalar_one_or_none()
        created = mention is None
        if created:
            mention = SocialMediaMention(account_id=account.id, platform_mention_id=platform_mention_id)
            self.db.add(mention)

        sender = _user(data, "from")
        text = sentiment.mention_text(data)
        context = sentiment.mention_context(text)
        score = sentiment.mention_sentiment(text)
        follower_count = _follower_count(sender.get("follower_count") or data.get("follower_count"))
        priority = sentiment.mention_priority(context, score, follower_count)

        mention.media_id = str(media_id) if media_id else None
        mention.comment_id = str(comment_id) if comment_id else None
        mention.from_user_id = sender.get("id")
        mention.from_username = sender.get("username")
        mention.follower_count = follower_count
        mention.text = text or None
        mention.mention_type = sentiment.mention_type(data)
        mention.mention_context = context
        mention.sentiment_score = score
        mention.priority = priority
        mention.requires_attention = priority.value == "high"
        mention.mention_metadata = {"raw": data}
        mention.occurred_at = occurred_at
        await self.db.flush()
        return mention, created

    async def _process_mention_item(self, account, data: dict[str, Any], occurred_at) -> IngestedEvent:
        if not isinstance(data, dict):
            raise MalformedPayloadError("mention item must be an object")
        event = await self.events.record(
            account_id=account.id,
            event_type=EventType.MENTION,
            payload=data,
            field_name="mentions",
            occurred_at=occurred_at,
        )
        mention, created = await self.upsert_mention(account, data, occurred_at)
        event.subject_type = "mention"
        event.subject_id = mention.id
        await self.db.flush()
        return IngestedEvent(event=event, account=account, subject=mention, is_new=created)

    # ─── messaging[] ─────────────────────────────────────────────────────────

    async def _process_messaging(self, account, data: dict[str, Any], occurred_at) -> IngestedEvent | None:
        """Store a direct message or story reply; redeliveries of a known mid are ignored"""
        if not isinstance(data, dict):
            raise MalformedPayloadError("messaging item must be an object")
        message_body = _user(data, "message")
        mid = message_body.get("mid") or data.get("mid")
        if not mid:
            raise MalformedPayloadError("messaging item without mid")
        mid = str(mid)

        existing = await self.db.execute(
            select(SocialMediaMessage.id).where(
                SocialMediaMessage.account_id == account.id,
                SocialMediaMessage.platform_message_id == mid,
            )
        )
        if existing.first() is not None:
            logger.info(
                "Duplicate message delivery ignored",
                extra_data={"account_id": account.id, "mid": mid},
            )
            return None

        event_type = classify_message(data)
        message_type = (
            MessageType.STORY_REPLY if event_type == EventType.STORY_REPLY else MessageType.DIRECT_MESSAGE
        )
        if message_body.get("is_echo"):
            message_type = MessageType.AUTOMATED_MESSAGE

        occurred = entry_time(data["timestamp"]) if data.get("timestamp") else occurred_at
        event = await self.events.record(
            account_id=account.id,
            event_type=event_type,
            payload=data,
            field_name="messaging",
            occurred_at=occurred,
        )

        text = message_body.get("text")
        score = sentiment.message_sentiment(text)
        message = SocialMediaMessage(
            account_id=account.id,
            platform_message_id=mid,
            sender_id=_user(data, "sender").get("id"),
            recipient_id=_user(data, "recipient").get("id"),
            message_text=text,
            message_type=message_type,
            sentiment_score=score,
            priority=sentiment.message_priority(text, score, message_type),
            message_metadata={"raw": data},
            received_at=occurred,
        )
        self.db.add(message)
        await self.db.flush()

        event.subject_type = "message"
        event.subject_id = message.id
        await self.db.flush()
        return IngestedEvent(event=event, account=account, subject=message)
