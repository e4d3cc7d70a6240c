"""
Engagement log and milestone records written by the workers
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, UniqueConstraint, Index

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base


class SocialMediaEngagementEvent(Base):
    """Append-only engagement log (comment received, like added, ...)"""

    __tablename__ = "social_media_engagement_events"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=False, index=True)
    post_id = Column(Integer, ForeignKey("social_media_posts.id"), nullable=True, index=True)
    event_type = Column(String(50), nullable=False)
    user_id = Column(String(100), nullable=True)
    event_data = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_engagement_account_type_time", "account_id", "event_type", "occurred_at"),
    )


class SocialMediaMilestone(Base):
    """Achievement record; at most one per (account, post, milestone_type)"""

    __tablename__ = "social_media_milestones"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=False, index=True)
    post_id = Column(Integer, ForeignKey("social_media_posts.id"), nullable=True)
    milestone_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=True)
    metrics_data = Column(JSON, nullable=False, default=dict)
    achieved_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "post_id", "milestone_type", name="uq_milestone_account_post_type"),
    )
