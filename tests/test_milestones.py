"""
Tests for milestone thresholds and idempotent milestone recording
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.db.models.engagement import SocialMediaMilestone
from engagement_hub.domain.services.milestone_service import (
    MilestoneService,
    comment_milestones,
    like_milestones,
    milestone_message,
    story_milestone,
)


class TestThresholds:

    @pytest.mark.unit
    def test_like_milestones(self) -> None:
        assert like_milestones(99) == []
        assert like_milestones(100) == ["likes_100"]
        assert like_milestones(1200) == ["likes_100", "likes_500", "likes_1000"]

    @pytest.mark.unit
    def test_comment_milestones(self) -> None:
        assert comment_milestones(9) == []
        assert comment_milestones(10) == ["comments_10"]
        assert comment_milestones(60) == ["comments_10", "comments_25", "comments_50"]

    @pytest.mark.unit
    @pytest.mark.parametrize("reach,expected", [
        (999, None),
        (1000, "story_reach_1k"),
        (9999, "story_reach_1k"),
        (10_000, "story_reach_10k"),
        (250_000, "story_reach_10k"),
    ])
    def test_story_milestone(self, reach, expected) -> None:
        assert story_milestone(reach) == expected

    @pytest.mark.unit
    def test_messages(self) -> None:
        assert milestone_message("likes_500") == "Your post reached 500 likes!"
        assert milestone_message("comments_25") == "Your post reached 25 comments!"
        assert milestone_message("story_reach_10k") == "Your story reached 10k accounts!"


class TestMilestoneService:

    @pytest.mark.asyncio
    async def test_record_once(self, db_session: AsyncSession, sample_account, post_factory) -> None:
        post = await post_factory(sample_account)
        service = MilestoneService(db_session)

        first = await service.record(sample_account.id, post.id, "likes_100", metrics={"likes_count": 100})
        await db_session.commit()
        second = await service.record(sample_account.id, post.id, "likes_100")
        await db_session.commit()

        assert first is not None
        assert first.message == "Your post reached 100 likes!"
        assert first.metrics_data == {"likes_count": 100}
        assert second is None

        count = await db_session.execute(select(func.count(SocialMediaMilestone.id)))
        assert count.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_account_level_milestone_without_post(self, db_session: AsyncSession, sample_account) -> None:
        service = MilestoneService(db_session)

        assert await service.record(sample_account.id, None, "followers_1000") is not None
        await db_session.commit()
        assert await service.record(sample_account.id, None, "followers_1000") is None

    @pytest.mark.asyncio
    async def test_record_many_skips_existing(
        self, db_session: AsyncSession, sample_account, post_factory
    ) -> None:
        post = await post_factory(sample_account)
        service = MilestoneService(db_session)
        await service.record(sample_account.id, post.id, "comments_10")
        await db_session.commit()

        created = await service.record_many(
            sample_account.id, post.id, ["comments_10", "comments_25"], {"comments_count": 30}
        )
        await db_session.commit()

        assert [m.milestone_type for m in created] == ["comments_25"]
