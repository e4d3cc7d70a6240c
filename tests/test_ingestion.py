"""
Tests for WebhookIngestionService

Covers:
- comment upsert idempotency (redelivery updates, never duplicates)
- mentions, messaging and unknown fields
- per-change isolation: a failing change becomes an error event
- per-entry isolation: bad times, non-list fields and failing entries spare their siblings
- unknown / inactive accounts are skipped
- dispatch happens after commit, once per new event; redeliveries do not re-notify
"""
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.core.exceptions import MalformedPayloadError
from engagement_hub.db.compat import utcnow
from engagement_hub.db.models.social_media_account import AccountStatus
from engagement_hub.db.models.social_media_comment import SocialMediaComment
from engagement_hub.db.models.social_media_mention import (
    EngagementPriority,
    MentionContext,
    MentionType,
    SocialMediaMention,
)
from engagement_hub.db.models.social_media_message import MessageType, SocialMediaMessage
from engagement_hub.db.models.webhook_event import EventType, Priority, WebhookEvent
from engagement_hub.domain.services.webhook_ingestion_service import WebhookIngestionService, entry_time

from tests.conftest import comment_payload

ACCOUNT_ID = "17841400000000001"


async def _count(db: AsyncSession, model) -> int:
    result = await db.execute(select(func.count(model.id)))
    return result.scalar_one()


class TestEntryTime:

    @pytest.mark.unit
    def test_seconds(self) -> None:
        assert entry_time(1_700_000_000) == datetime(2023, 11, 14, 22, 13, 20)

    @pytest.mark.unit
    def test_milliseconds(self) -> None:
        assert entry_time(1_700_000_000_000) == datetime(2023, 11, 14, 22, 13, 20)

    @pytest.mark.unit
    def test_garbage_falls_back_to_now(self) -> None:
        assert isinstance(entry_time("not-a-time"), datetime)

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [10**20, float("inf"), float("nan"), "-inf"])
    def test_out_of_range_falls_back_to_now(self, raw) -> None:
        before = utcnow().replace(microsecond=0)
        assert entry_time(raw) >= before


class TestComments:

    @pytest.mark.asyncio
    async def test_comment_creates_event_and_row(
        self, db_session: AsyncSession, sample_account, post_factory
    ) -> None:
        post = await post_factory(sample_account, platform_post_id="m-1")

        result = await WebhookIngestionService(db_session).process_payload(
            comment_payload(text="Love this #summer @anna"), dispatch=False
        )

        assert result.event_count == 1
        event = result.events[0].event
        assert event.event_type == EventType.COMMENT
        assert event.priority == Priority.MEDIUM
        assert event.subject_type == "comment"

        comment = await db_session.get(SocialMediaComment, event.subject_id)
        assert comment.platform_comment_id == "c-1"
        assert comment.post_id == post.id
        assert comment.commenter_username == "shopper"
        assert comment.sentiment_score == 1.0
        assert comment.comment_metadata["hashtags"] == ["#summer"]
        assert comment.comment_metadata["mentions"] == ["@anna"]
        assert comment.comment_metadata["source_field"] == "comments"

    @pytest.mark.asyncio
    async def test_redelivery_updates_existing_comment(
        self, db_session: AsyncSession, sample_account
    ) -> None:
        service = WebhookIngestionService(db_session)

        first = await service.process_payload(comment_payload(text="first version"), dispatch=False)
        second = await service.process_payload(comment_payload(text="edited: terrible"), dispatch=False)

        assert await _count(db_session, SocialMediaComment) == 1
        assert first.events[0].event.subject_id == second.events[0].event.subject_id

        comment = (await db_session.execute(select(SocialMediaComment))).scalar_one()
        assert comment.text == "edited: terrible"
        assert comment.sentiment_score == 0.0
        assert await _count(db_session, WebhookEvent) == 2

    @pytest.mark.asyncio
    async def test_same_comment_id_for_other_account_is_separate(
        self, db_session: AsyncSession, account_factory
    ) -> None:
        await account_factory(platform_account_id="acc-a")
        await account_factory(platform_account_id="acc-b")
        service = WebhookIngestionService(db_session)

        await service.process_payload(comment_payload(account_id="acc-a"), dispatch=False)
        await service.process_payload(comment_payload(account_id="acc-b"), dispatch=False)

        assert await _count(db_session, SocialMediaComment) == 2


class TestOtherChanges:

    @pytest.mark.asyncio
    async def test_mention_change(self, db_session: AsyncSession, sample_account) -> None:
        payload = {
            "entry": [{
                "id": ACCOUNT_ID,
                "changes": [{
                    "field": "mentions",
                    "value": {"media_id": "m-9", "comment_id": "c-9", "text": "I have a problem with my order"},
                }],
            }],
        }

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        event = result.events[0].event
        assert event.event_type == EventType.MENTION
        mention = await db_session.get(SocialMediaMention, event.subject_id)
        assert mention.platform_mention_id == "m-9:c-9"
        assert mention.mention_type == MentionType.POST_MENTION
        assert mention.mention_context == MentionContext.COMPLAINT
        assert mention.priority == EngagementPriority.HIGH
        assert mention.requires_attention is True

    @pytest.mark.asyncio
    async def test_like_and_unknown_are_event_only(self, db_session: AsyncSession, sample_account) -> None:
        payload = {
            "entry": [{
                "id": ACCOUNT_ID,
                "changes": [
                    {"field": "likes", "value": {"media_id": "m-1", "verb": "add"}},
                    {"field": "brand_safety", "value": "whatever"},
                ],
            }],
        }

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        types = [item.event.event_type for item in result.events]
        assert types == [EventType.LIKE, EventType.UNKNOWN]
        unknown = result.events[1].event
        assert unknown.field_name == "brand_safety"
        assert unknown.payload == {"raw": "whatever"}
        assert all(item.subject is None for item in result.events)

    @pytest.mark.asyncio
    async def test_messaging_dedup_on_mid(self, db_session: AsyncSession, sample_account) -> None:
        payload = {
            "entry": [{
                "id": ACCOUNT_ID,
                "messaging": [{
                    "sender": {"id": "u-5"},
                    "recipient": {"id": ACCOUNT_ID},
                    "timestamp": 1_700_000_000_000,
                    "message": {"mid": "mid-1", "text": "Do you ship to Lisbon?"},
                }],
            }],
        }
        service = WebhookIngestionService(db_session)

        first = await service.process_payload(payload, dispatch=False)
        second = await service.process_payload(payload, dispatch=False)

        assert first.event_count == 1
        assert second.event_count == 0
        assert await _count(db_session, SocialMediaMessage) == 1

        message = (await db_session.execute(select(SocialMediaMessage))).scalar_one()
        assert message.message_type == MessageType.DIRECT_MESSAGE
        assert message.sender_id == "u-5"
        assert message.received_at == datetime(2023, 11, 14, 22, 13, 20)
        assert message.requires_response is True

    @pytest.mark.asyncio
    async def test_story_reply(self, db_session: AsyncSession, sample_account) -> None:
        payload = {
            "entry": [{
                "id": ACCOUNT_ID,
                "messaging": [{
                    "sender": {"id": "u-5"},
                    "message": {"mid": "mid-2", "text": "wow", "reply_to": {"story": {"id": "s-1"}}},
                }],
            }],
        }

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        assert result.events[0].event.event_type == EventType.STORY_REPLY
        assert result.events[0].subject.message_type == MessageType.STORY_REPLY

    @pytest.mark.asyncio
    async def test_mentions_array(self, db_session: AsyncSession, sample_account) -> None:
        payload = {"entry": [{"id": ACCOUNT_ID, "mentions": [{"id": "men-1", "text": "love it"}]}]}

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        mention = result.events[0].subject
        assert mention.platform_mention_id == "men-1"
        assert mention.mention_type == MentionType.STORY_MENTION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_count,stored", [("20000", 20000), ("lots", None)])
    async def test_mention_follower_count_coerced(
        self, db_session: AsyncSession, sample_account, raw_count, stored
    ) -> None:
        payload = {"entry": [{"id": ACCOUNT_ID, "mentions": [{
            "id": "men-2",
            "text": "just posted this",
            "from": {"id": "u-7", "username": "creator", "follower_count": raw_count},
        }]}]}

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        assert [item.event.event_type for item in result.events] == [EventType.MENTION]
        mention = (await db_session.execute(select(SocialMediaMention))).scalar_one()
        assert mention.follower_count == stored
        if stored is not None:
            assert mention.priority == EngagementPriority.MEDIUM


class TestIsolation:

    @pytest.mark.asyncio
    async def test_failing_change_becomes_error_event(self, db_session: AsyncSession, sample_account) -> None:
        payload = {
            "entry": [{
                "id": ACCOUNT_ID,
                "changes": [
                    {"field": "comments", "value": {"text": "no id here"}},
                    {"field": "comments", "value": {"id": "c-ok", "text": "great"}},
                ],
            }],
        }

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        types = [item.event.event_type for item in result.events]
        assert types == [EventType.ERROR, EventType.COMMENT]
        error_event = result.events[0].event
        assert "comment change without an id" in error_event.last_error
        assert error_event.priority == Priority.CRITICAL
        assert error_event.processing_attempts == 1

        # the failed change left no partial rows behind
        assert await _count(db_session, SocialMediaComment) == 1
        assert await _count(db_session, WebhookEvent) == 2

    @pytest.mark.asyncio
    async def test_unknown_account_skipped(self, db_session: AsyncSession, sample_account) -> None:
        payload = comment_payload(account_id="someone-else")

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        assert result.event_count == 0
        assert result.skipped_entries == 1
        assert await _count(db_session, WebhookEvent) == 0

    @pytest.mark.asyncio
    async def test_inactive_account_skipped(self, db_session: AsyncSession, account_factory) -> None:
        await account_factory(status=AccountStatus.INACTIVE)

        result = await WebhookIngestionService(db_session).process_payload(comment_payload(), dispatch=False)

        assert result.event_count == 0

    @pytest.mark.asyncio
    async def test_out_of_range_time_keeps_entry(self, db_session: AsyncSession, sample_account) -> None:
        payload = comment_payload(comment_id="c-1")
        payload["entry"].append(comment_payload(comment_id="c-2", time=10**20)["entry"][0])

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        assert result.event_count == 2
        assert await _count(db_session, SocialMediaComment) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_fields", [
        {"changes": 5},
        {"changes": "comments"},
        {"messaging": "abc"},
        {"mentions": 7},
    ])
    async def test_non_list_entry_fields_ignored(
        self, db_session: AsyncSession, sample_account, bad_fields
    ) -> None:
        payload = comment_payload()
        payload["entry"].insert(0, {"id": ACCOUNT_ID, **bad_fields})

        result = await WebhookIngestionService(db_session).process_payload(payload, dispatch=False)

        assert [item.event.event_type for item in result.events] == [EventType.COMMENT]
        assert await _count(db_session, WebhookEvent) == 1
        assert await _count(db_session, SocialMediaComment) == 1

    @pytest.mark.asyncio
    async def test_failing_entry_skipped_siblings_kept(
        self, db_session: AsyncSession, account_factory
    ) -> None:
        await account_factory(platform_account_id="acc-ok")
        await account_factory(platform_account_id="acc-broken")
        service = WebhookIngestionService(db_session)
        find_account = service.find_account

        async def flaky_find_account(platform_account_id):
            account = await find_account(platform_account_id)
            if platform_account_id == "acc-broken":
                raise RuntimeError("lookup exploded")
            return account

        payload = {"entry": [
            comment_payload(account_id="acc-broken", comment_id="c-lost")["entry"][0],
            comment_payload(account_id="acc-ok", comment_id="c-kept")["entry"][0],
        ]}
        with patch.object(service, "find_account", side_effect=flaky_find_account):
            result = await service.process_payload(payload, dispatch=False)

        assert result.skipped_entries == 1
        assert result.event_count == 1
        comment = (await db_session.execute(select(SocialMediaComment))).scalar_one()
        assert comment.platform_comment_id == "c-kept"

    @pytest.mark.asyncio
    async def test_entry_must_be_list(self, db_session: AsyncSession) -> None:
        with pytest.raises(MalformedPayloadError):
            await WebhookIngestionService(db_session).process_payload({"entry": {"id": "1"}})


class TestDispatch:

    @pytest.mark.asyncio
    async def test_one_enqueue_per_new_event(
        self, db_session: AsyncSession, sample_account, mock_tasks
    ) -> None:
        result = await WebhookIngestionService(db_session).process_payload(comment_payload())

        comment_event = result.events[0].event
        mock_tasks.process_comment.delay.assert_called_once_with(comment_event.subject_id, comment_event.id)
        assert result.dispatched == ["process_comment"]

    @pytest.mark.asyncio
    async def test_error_events_are_not_dispatched(
        self, db_session: AsyncSession, sample_account, mock_tasks
    ) -> None:
        payload = {"entry": [{"id": ACCOUNT_ID, "changes": [{"field": "comments", "value": {}}]}]}

        result = await WebhookIngestionService(db_session).process_payload(payload)

        assert result.event_count == 1
        assert result.dispatched == []
        mock_tasks.process_comment.delay.assert_not_called()

    @pytest.mark.asyncio
    async def test_redelivered_comment_notifies_once(
        self, db_session: AsyncSession, vendor_factory, account_factory, mock_tasks
    ) -> None:
        vendor = await vendor_factory(notification_preferences={"new_comment": True})
        await account_factory(vendor=vendor)
        service = WebhookIngestionService(db_session)

        await service.process_payload(comment_payload(text="first version"))
        await service.process_payload(comment_payload(text="edited version"))

        assert mock_tasks.process_comment.delay.call_count == 2
        mock_tasks.send_notification.delay.assert_called_once()
        assert mock_tasks.send_notification.delay.call_args.args[1] == "new_comment"
