"""
Social Media Comment Model

Unique per (account, platform_comment_id) so a redelivered webhook updates
the existing row instead of creating a duplicate.
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, Text, JSON, ForeignKey, UniqueConstraint, Index,
)

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base


class SocialMediaComment(Base):
    __tablename__ = "social_media_comments"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=False, index=True)
    post_id = Column(Integer, ForeignKey("social_media_posts.id"), nullable=True, index=True)

    platform_comment_id = Column(String(100), nullable=False)
    parent_comment_id = Column(String(100), nullable=True)
    media_id = Column(String(100), nullable=True)
    commenter_id = Column(String(100), nullable=True)
    commenter_username = Column(String(100), nullable=True)
    text = Column(Text, nullable=True)
    commented_at = Column(DateTime, nullable=True)

    sentiment_score = Column(Float, nullable=True)
    detected_language = Column(String(10), nullable=True)
    # raw payload plus extracted mentions / hashtags
    comment_metadata = Column("metadata", JSON, nullable=False, default=dict)
    moderation_flags = Column(JSON, nullable=False, default=list)
    requires_moderation = Column(Boolean, nullable=False, default=False)

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "platform_comment_id", name="uq_comment_account_platform_id"),
        Index("ix_comments_account_processed", "account_id", "processed"),
    )

    @property
    def is_reply(self) -> bool:
        return bool(self.parent_comment_id)

    @property
    def sentiment_label(self) -> str:
        from engagement_hub.domain.sentiment import sentiment_label

        return sentiment_label(self.sentiment_score)
