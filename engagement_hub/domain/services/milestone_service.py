"""
Milestone Service - records engagement milestones once per account/post/type
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.core.logging import get_logger
from engagement_hub.db.compat import utcnow
from engagement_hub.db.models.engagement import SocialMediaMilestone

logger = get_logger(__name__)

LIKE_MILESTONES = (100, 500, 1000, 5000, 10000)
COMMENT_MILESTONES = (10, 25, 50, 100, 500, 1000)
STORY_REACH_MILESTONES = ((10_000, "story_reach_10k"), (1_000, "story_reach_1k"))


def like_milestones(count: int) -> list[str]:
    """Like milestone types already crossed at ``count`` likes"""
    return [f"likes_{threshold}" for threshold in LIKE_MILESTONES if count >= threshold]


def comment_milestones(count: int) -> list[str]:
    return [f"comments_{threshold}" for threshold in COMMENT_MILESTONES if count >= threshold]


def story_milestone(reach: int) -> str | None:
    """Highest story reach milestone crossed, or None"""
    for threshold, milestone_type in STORY_REACH_MILESTONES:
        if reach >= threshold:
            return milestone_type
    return None


def milestone_message(milestone_type: str) -> str:
    kind, _, value = milestone_type.partition("_")
    if kind == "likes":
        return f"Your post reached {value} likes!"
    if kind == "comments":
        return f"Your post reached {value} comments!"
    if milestone_type.startswith("story_reach_"):
        return f"Your story reached {milestone_type.rsplit('_', 1)[-1]} accounts!"
    return f"Milestone achieved: {milestone_type}"


class MilestoneService:
    """Idempotent milestone recording"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def exists(self, account_id: int, post_id: int | None, milestone_type: str) -> bool:
        # NULL post_id never collides in a unique index, so it is matched explicitly
        post_clause = (
            SocialMediaMilestone.post_id.is_(None)
            if post_id is None
            else SocialMediaMilestone.post_id == post_id
        )
        result = await self.db.execute(
            select(SocialMediaMilestone.id).where(
                SocialMediaMilestone.account_id == account_id,
                SocialMediaMilestone.milestone_type == milestone_type,
                post_clause,
            )
        )
        return result.first() is not None

    async def record(
        self,
        account_id: int,
        post_id: int | None,
        milestone_type: str,
        message: str | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> SocialMediaMilestone | None:
        """Insert the milestone unless it already exists; the caller commits.

        Returns the new milestone, or None when it was already recorded.
        """
        if await self.exists(account_id, post_id, milestone_type):
            return None

        milestone = SocialMediaMilestone(
            account_id=account_id,
            post_id=post_id,
            milestone_type=milestone_type,
            message=message or milestone_message(milestone_type),
            metrics_data=metrics or {},
            achieved_at=utcnow(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(milestone)
        except IntegrityError:
            # another worker recorded it first
            return None

        logger.info(
            "Milestone achieved",
            extra_data={
                "account_id": account_id,
                "post_id": post_id,
                "milestone_type": milestone_type,
            },
        )
        return milestone

    async def record_many(
        self,
        account_id: int,
        post_id: int | None,
        milestone_types: list[str],
        metrics: dict[str, Any] | None = None,
    ) -> list[SocialMediaMilestone]:
        created = []
        for milestone_type in milestone_types:
            milestone = await self.record(account_id, post_id, milestone_type, metrics=metrics)
            if milestone is not None:
                created.append(milestone)
        return created
