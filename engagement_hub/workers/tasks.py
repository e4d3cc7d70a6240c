"""
Celery Tasks for Webhook Event Processing

Worker side of the ingestion pipeline: every task loads the stored event,
does the follow-up work (sentiment, counters, milestones, notifications)
and records the attempt on the event via WebhookEventService.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from sqlalchemy import select

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.workers.celery_app import celery_app
from engagement_hub.core.config import settings
from engagement_hub.core.exceptions import EventNotFoundError, ExternalServiceException
from engagement_hub.core.logging import bind_event_context, get_logger, set_correlation_id
from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import get_task_session
from engagement_hub.db.models.engagement import SocialMediaEngagementEvent
from engagement_hub.db.models.social_media_account import (
    AccountStatus,
    SocialMediaAccount,
    SocialPlatform,
)
from engagement_hub.db.models.social_media_comment import SocialMediaComment
from engagement_hub.db.models.social_media_mention import EngagementPriority, SocialMediaMention
from engagement_hub.db.models.social_media_message import SocialMediaMessage
from engagement_hub.db.models.social_media_post import PostContentType, SocialMediaPost
from engagement_hub.db.models.vendor import Vendor
from engagement_hub.db.models.webhook_event import EventType, WebhookEvent
from engagement_hub.domain import sentiment
from engagement_hub.domain.services.dispatcher import EventDispatcher, truncate
from engagement_hub.domain.services.instagram_api import InstagramGraphClient
from engagement_hub.domain.services.milestone_service import (
    MilestoneService,
    comment_milestones,
    like_milestones,
    story_milestone,
)
from engagement_hub.domain.services.notification_service import NotificationService
from engagement_hub.domain.services.webhook_event_service import WebhookEventService

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


# ─── shared helpers ──────────────────────────────────────────────────────────

@dataclass
class JobContext:
    """State of one event job; notifications are sent only after commit"""
    db: "AsyncSession"
    event: WebhookEvent
    account: SocialMediaAccount | None
    notifications: list[tuple[int, str, dict[str, Any]]] = field(default_factory=list)

    def notify(self, notification_type: str, data: dict[str, Any]) -> None:
        vendor = self.account.vendor if self.account is not None else None
        if vendor is not None and vendor.wants_notification(notification_type):
            self.notifications.append((vendor.id, notification_type, data))


def _enqueue_notifications(notifications: list[tuple[int, str, dict[str, Any]]]) -> None:
    for vendor_id, notification_type, data in notifications:
        try:
            send_notification.delay(vendor_id, notification_type, data)
        except Exception as e:
            logger.error(
                "Failed to enqueue notification",
                extra_data={"vendor_id": vendor_id, "type": notification_type, "error": str(e)},
            )


async def _get_account(db: "AsyncSession", account_id: int | None) -> SocialMediaAccount | None:
    if account_id is None:
        return None
    result = await db.execute(select(SocialMediaAccount).where(SocialMediaAccount.id == account_id))
    return result.unique().scalar_one_or_none()


async def _get_post(db: "AsyncSession", account_id: int, platform_post_id: str | None,
                    content_type: PostContentType | None = None) -> SocialMediaPost | None:
    if not platform_post_id:
        return None
    query = select(SocialMediaPost).where(
        SocialMediaPost.account_id == account_id,
        SocialMediaPost.platform_post_id == str(platform_post_id),
    )
    if content_type is not None:
        query = query.where(SocialMediaPost.content_type == content_type)
    result = await db.execute(query)
    return result.scalar_one_or_none()


def _log_engagement(ctx: JobContext, event_type: str, post: SocialMediaPost | None,
                    user_id: str | None, data: dict[str, Any]) -> None:
    ctx.db.add(SocialMediaEngagementEvent(
        account_id=ctx.event.account_id,
        post_id=post.id if post is not None else None,
        event_type=event_type,
        user_id=user_id,
        event_data=data,
        occurred_at=ctx.event.occurred_at or utcnow(),
    ))


async def _record_milestones(ctx: JobContext, post: SocialMediaPost, milestone_types: list[str]) -> list[str]:
    metrics = {
        "likes_count": post.likes_count,
        "comments_count": post.comments_count,
        "shares_count": post.shares_count,
        "reach": post.reach,
    }
    created = await MilestoneService(ctx.db).record_many(post.account_id, post.id, milestone_types, metrics)
    for milestone in created:
        ctx.notify("milestone_achieved", {
            "post_id": post.id,
            "milestone_type": milestone.milestone_type,
            "post_caption": truncate(post.caption),
        })
    return [m.milestone_type for m in created]


async def _run_event_job(
    event_id: int,
    handler: Callable[[JobContext], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    """
    Load the event, run ``handler`` and record the outcome.

    Success marks the event processed with the handler's result; any
    exception rolls back the handler's writes and counts a failed attempt.
    """
    async with get_task_session() as db:
        events = WebhookEventService(db)
        try:
            event = await events.get(event_id)
        except EventNotFoundError:
            logger.warning("Webhook event not found", extra_data={"event_id": event_id})
            return {"success": False, "event_id": event_id, "error": "event not found"}

        if event.processed:
            logger.info("Webhook event already processed", extra_data={"event_id": event_id})
            return {"success": True, "event_id": event_id, "skipped": True}

        with bind_event_context(event_id=event_id, event_type=event.event_type.value,
                                account_id=event.account_id):
            ctx = JobContext(db=db, event=event, account=await _get_account(db, event.account_id))
            try:
                result = await handler(ctx)
            except Exception as e:
                await db.rollback()
                logger.error(
                    "Webhook event processing failed",
                    extra_data={"event_id": event_id, "error": str(e)},
                    exc_info=True,
                )
                await events.mark_failed(event_id, f"{type(e).__name__}: {e}")
                return {"success": False, "event_id": event_id, "error": str(e)}

            await events.mark_processed(event_id, result)
            _enqueue_notifications(ctx.notifications)
            return {"success": True, "event_id": event_id, "result": result}


# ─── comments / mentions / messages ──────────────────────────────────────────

async def _handle_comment(ctx: JobContext, comment_id: int) -> dict[str, Any]:
    comment = await ctx.db.get(SocialMediaComment, comment_id)
    if comment is None:
        raise LookupError(f"comment {comment_id} not found")

    first_time = not comment.processed
    text = comment.text
    score = sentiment.comment_sentiment(text)
    flags = sentiment.moderation_flags(text)
    needs_attention = sentiment.comment_requires_attention(text, score)

    comment.sentiment_score = score
    comment.detected_language = sentiment.detect_language(text)
    comment.moderation_flags = flags
    comment.requires_moderation = bool(flags) or needs_attention

    post = await ctx.db.get(SocialMediaPost, comment.post_id) if comment.post_id else None
    milestones: list[str] = []
    if first_time:
        if post is not None:
            post.comments_count = (post.comments_count or 0) + 1
            post.last_engagement_at = utcnow()
        _log_engagement(ctx, "comment", post, comment.commenter_id, {
            "comment_id": comment.id,
            "platform_comment_id": comment.platform_comment_id,
        })
        if post is not None:
            milestones = await _record_milestones(ctx, post, comment_milestones(post.comments_count))

    label = sentiment.sentiment_label(score)
    notification_data = {
        "comment_id": comment.id,
        "post_id": comment.post_id,
        "commenter": comment.commenter_username,
        "text": truncate(text),
        "sentiment": label,
    }
    if label == "negative":
        ctx.notify("negative_comment", notification_data)
    if needs_attention:
        ctx.notify("priority_comment", {**notification_data, "priority": "high"})

    comment.processed = True
    comment.processed_at = utcnow()
    return {
        "comment_id": comment.id,
        "sentiment": label,
        "moderation_flags": flags,
        "requires_moderation": comment.requires_moderation,
        "milestones": milestones,
        "reply_suggestions": sentiment.comment_reply_suggestions(text, score),
    }


async def _handle_mention(ctx: JobContext, mention_id: int) -> dict[str, Any]:
    mention = await ctx.db.get(SocialMediaMention, mention_id)
    if mention is None:
        raise LookupError(f"mention {mention_id} not found")

    first_time = not mention.processed
    mention.requires_attention = mention.priority == EngagementPriority.HIGH
    if first_time:
        post = await _get_post(ctx.db, mention.account_id, mention.media_id)
        _log_engagement(ctx, "mention", post, mention.from_user_id, {
            "mention_id": mention.id,
            "mention_type": mention.mention_type.value,
            "context": mention.mention_context.value,
        })

    if mention.requires_attention:
        ctx.notify("new_mention", {
            "mention_id": mention.id,
            "from_user": mention.from_username,
            "mention_type": mention.mention_type.value,
            "context": mention.mention_context.value,
            "priority": "high",
            "text": truncate(mention.text),
        })

    mention.processed = True
    mention.processed_at = utcnow()
    return {
        "mention_id": mention.id,
        "priority": mention.priority.value,
        "context": mention.mention_context.value,
        "requires_attention": mention.requires_attention,
    }


async def _handle_message(ctx: JobContext, message_id: int) -> dict[str, Any]:
    message = await ctx.db.get(SocialMediaMessage, message_id)
    if message is None:
        raise LookupError(f"message {message_id} not found")

    requires_response = message.requires_response
    if not message.processed:
        _log_engagement(ctx, message.message_type.value, None, message.sender_id, {
            "message_id": message.id,
        })
    if requires_response:
        ctx.notify("new_message", {
            "message_id": message.id,
            "sender_id": message.sender_id,
            "message_type": message.message_type.value,
            "priority": message.priority.value,
            "requires_response": True,
            "text": truncate(message.message_text),
        })

    message.processed = True
    message.processed_at = utcnow()
    return {
        "message_id": message.id,
        "priority": message.priority.value,
        "requires_response": requires_response,
    }


# ─── likes / follows / story insights / media ────────────────────────────────

async def _handle_engagement(ctx: JobContext) -> dict[str, Any]:
    event_type = ctx.event.event_type
    payload = ctx.event.payload or {}
    media_id = payload.get("media_id")
    user_id = payload.get("user_id")
    verb = payload.get("verb", "add")

    post = await _get_post(ctx.db, ctx.event.account_id, media_id)
    milestones: list[str] = []

    if event_type in (EventType.LIKE, EventType.UNLIKE) and post is not None:
        removing = event_type == EventType.UNLIKE or verb == "remove"
        if removing:
            post.likes_count = max((post.likes_count or 0) - 1, 0)
        else:
            post.likes_count = (post.likes_count or 0) + 1
            post.last_engagement_at = utcnow()
        _log_engagement(ctx, "unlike" if removing else "like", post, user_id, payload)
        if not removing:
            milestones = await _record_milestones(ctx, post, like_milestones(post.likes_count))
        return {"post_id": post.id, "likes_count": post.likes_count, "milestones": milestones}

    if event_type in (EventType.FOLLOW, EventType.UNFOLLOW):
        _log_engagement(ctx, event_type.value, None, user_id, payload)
        return {"logged": event_type.value}

    logger.info("Engagement event for unknown post", extra_data={"media_id": media_id})
    return {"post_found": False, "media_id": media_id}


async def _handle_story_insights(ctx: JobContext) -> dict[str, Any]:
    payload = ctx.event.payload or {}
    insights = payload.get("insights") or {}
    story = await _get_post(ctx.db, ctx.event.account_id, payload.get("story_id"), PostContentType.STORY)
    if story is None or not insights:
        return {"story_found": story is not None}

    reach = int(insights.get("reach") or 0)
    story.reach = reach
    story.impressions = int(insights.get("impressions") or story.impressions or 0)
    story.last_synced_at = utcnow()

    milestone_type = story_milestone(reach)
    milestones = await _record_milestones(ctx, story, [milestone_type]) if milestone_type else []
    return {"post_id": story.id, "reach": reach, "milestones": milestones}


async def _sync_post(db: "AsyncSession", account: SocialMediaAccount, post: SocialMediaPost) -> dict[str, Any]:
    """
    Refresh a post from the Graph API. Platform failures mark the account
    as errored and are reported in the result, never raised.
    """
    try:
        media = await InstagramGraphClient(account).get_media(post.platform_post_id)
    except ExternalServiceException as e:
        message = getattr(e, "platform_message", e.message)
        account.mark_error(message)
        logger.warning(
            "Post sync failed",
            extra_data={"account_id": account.id, "post_id": post.id, "error": message},
        )
        return {"post_id": post.id, "synced": False, "error": message}

    post.caption = media.get("caption", post.caption)
    post.permalink = media.get("permalink", post.permalink)
    if media.get("media_type"):
        post.content_type = PostContentType.from_media_type(media["media_type"])
    if media.get("like_count") is not None:
        post.likes_count = int(media["like_count"])
    if media.get("comments_count") is not None:
        post.comments_count = int(media["comments_count"])
    post.last_synced_at = utcnow()
    account.last_sync_at = post.last_synced_at
    return {"post_id": post.id, "synced": True}


async def _handle_media(ctx: JobContext) -> dict[str, Any]:
    payload = ctx.event.payload or {}
    media_id = payload.get("id") or payload.get("media_id")
    if not media_id:
        raise ValueError("media change without id")

    post = await _get_post(ctx.db, ctx.event.account_id, media_id)
    created = post is None
    if created:
        post = SocialMediaPost(
            account_id=ctx.event.account_id,
            platform_post_id=str(media_id),
            content_type=PostContentType.from_media_type(payload.get("media_type")),
            status="published",
            published_at=ctx.event.occurred_at,
        )
        ctx.db.add(post)
        await ctx.db.flush()

    result = {"created": created}
    if ctx.account is not None:
        result.update(await _sync_post(ctx.db, ctx.account, post))
    return result


async def _handle_general(ctx: JobContext) -> dict[str, Any]:
    event_type = ctx.event.event_type
    if event_type == EventType.STORY:
        return await _handle_story_insights(ctx)
    if event_type == EventType.MEDIA:
        return await _handle_media(ctx)
    if event_type in (EventType.LIKE, EventType.UNLIKE, EventType.FOLLOW, EventType.UNFOLLOW):
        return await _handle_engagement(ctx)

    payload = ctx.event.payload or {}
    _log_engagement(ctx, event_type.value, None, payload.get("user_id"), payload)
    return {"logged": event_type.value}


# ─── tasks ───────────────────────────────────────────────────────────────────

@celery_app.task(name="engagement_hub.workers.tasks.process_comment")
def process_comment(comment_id: int, event_id: int):
    """Score and moderate a comment, update counters and milestones"""
    return run_async(_run_event_job(event_id, lambda ctx: _handle_comment(ctx, comment_id)))


@celery_app.task(name="engagement_hub.workers.tasks.process_mention")
def process_mention(mention_id: int, event_id: int):
    return run_async(_run_event_job(event_id, lambda ctx: _handle_mention(ctx, mention_id)))


@celery_app.task(name="engagement_hub.workers.tasks.process_message")
def process_message(message_id: int, event_id: int):
    return run_async(_run_event_job(event_id, lambda ctx: _handle_message(ctx, message_id)))


@celery_app.task(name="engagement_hub.workers.tasks.process_webhook_event")
def process_webhook_event(event_id: int, kind: str = "general"):
    """Likes and follows ("engagement"), story insights and media ("general")"""
    handler = _handle_engagement if kind == "engagement" else _handle_general
    return run_async(_run_event_job(event_id, handler))


@celery_app.task(name="engagement_hub.workers.tasks.send_notification")
def send_notification(vendor_id: int, notification_type: str, data: dict):
    """Log the notification and POST it to the vendor webhook when configured"""

    async def _send():
        async with get_task_session() as db:
            vendor = await db.get(Vendor, vendor_id)
            if vendor is None:
                logger.warning("Notification for unknown vendor", extra_data={"vendor_id": vendor_id})
                return {"delivered": False, "error": "vendor not found"}
            delivered = await NotificationService().send(vendor, notification_type, data)
            return {"delivered": delivered, "vendor_id": vendor_id, "type": notification_type}

    return run_async(_send())


@celery_app.task(name="engagement_hub.workers.tasks.sync_post_data")
def sync_post_data(post_id: int):
    """Refresh one post's caption, permalink and counters from the Graph API"""

    async def _sync():
        async with get_task_session() as db:
            post = await db.get(SocialMediaPost, post_id)
            if post is None:
                return {"synced": False, "error": "post not found"}
            account = await _get_account(db, post.account_id)
            if account is None or not account.is_active:
                return {"synced": False, "error": "account not active"}
            result = await _sync_post(db, account, post)
            await db.commit()
            return result

    return run_async(_sync())


@celery_app.task(name="engagement_hub.workers.tasks.retry_failed_webhook_events")
def retry_failed_webhook_events():
    """Re-dispatch failed events whose backoff has elapsed"""

    async def _retry():
        async with get_task_session() as db:
            candidates = await WebhookEventService(db).get_retry_candidates()
            dispatcher = EventDispatcher(db)
            dispatched = 0
            for event in candidates:
                if await dispatcher.dispatch(event):
                    dispatched += 1

            logger.info(
                "Retry sweep finished",
                extra_data={"candidates": len(candidates), "dispatched": dispatched},
            )
            return {"candidates": len(candidates), "dispatched": dispatched}

    return run_async(_retry())


@celery_app.task(name="engagement_hub.workers.tasks.cleanup_old_webhook_events")
def cleanup_old_webhook_events(days: int | None = None):
    """Delete events past retention; error events are kept twice as long"""

    async def _cleanup():
        async with get_task_session() as db:
            deleted = await WebhookEventService(db).cleanup_old_events(days)
            return {"deleted": deleted}

    return run_async(_cleanup())


@celery_app.task(name="engagement_hub.workers.tasks.refresh_instagram_tokens")
def refresh_instagram_tokens():
    """
    Refresh long-lived tokens expiring inside TOKEN_REFRESH_WINDOW_DAYS.

    Tokens younger than TOKEN_MIN_AGE_HOURS are skipped (Instagram refuses
    them); a failed refresh marks the account as errored.
    """

    async def _refresh():
        window = timedelta(days=settings.TOKEN_REFRESH_WINDOW_DAYS)
        min_age = timedelta(hours=settings.TOKEN_MIN_AGE_HOURS)
        now = utcnow()

        async with get_task_session() as db:
            result = await db.execute(
                select(SocialMediaAccount).where(
                    SocialMediaAccount.platform == SocialPlatform.INSTAGRAM,
                    SocialMediaAccount.status == AccountStatus.ACTIVE,
                    SocialMediaAccount.access_token.is_not(None),
                    SocialMediaAccount.expires_at.is_not(None),
                    SocialMediaAccount.expires_at <= now + window,
                )
            )
            accounts = [
                a for a in result.unique().scalars().all()
                if a.token_needs_refresh(window, now) and a.token_refreshable(min_age, now)
            ]

            refreshed, failed = 0, 0
            for account in accounts:
                account_id = account.id
                try:
                    token = await InstagramGraphClient(account).refresh_long_lived_token()
                except ExternalServiceException as e:
                    message = getattr(e, "platform_message", e.message)
                    account.mark_error(f"Token refresh failed: {message}")
                    failed += 1
                    logger.error(
                        "Instagram token refresh failed",
                        extra_data={"account_id": account_id, "error": message},
                    )
                else:
                    account.access_token = token.access_token
                    account.expires_at = token.expires_at
                    account.token_refreshed_at = utcnow()
                    refreshed += 1
                    logger.info(
                        "Instagram token refreshed",
                        extra_data={"account_id": account_id, "expires_at": token.expires_at.isoformat()},
                    )
                await db.commit()

            return {"checked": len(accounts), "refreshed": refreshed, "failed": failed}

    return run_async(_refresh())
