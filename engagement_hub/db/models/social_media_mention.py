"""
Social Media Mention Model
"""
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, Text, JSON, Enum as SQLEnum, ForeignKey,
    UniqueConstraint,
)

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base


class MentionType(str, enum.Enum):
    POST_MENTION = "post_mention"
    COMMENT_MENTION = "comment_mention"
    STORY_MENTION = "story_mention"
    DIRECT_MENTION = "direct_mention"


class MentionContext(str, enum.Enum):
    QUESTION = "question"
    COMPLAINT = "complaint"
    COMPLIMENT = "compliment"
    TAG_FRIEND = "tag_friend"
    REPOST_REQUEST = "repost_request"
    GENERAL = "general"
    UNKNOWN = "unknown"


class EngagementPriority(str, enum.Enum):
    """Priority of a mention or message; separate from webhook event priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SocialMediaMention(Base):
    __tablename__ = "social_media_mentions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=False, index=True)

    platform_mention_id = Column(String(100), nullable=False)
    media_id = Column(String(100), nullable=True)
    comment_id = Column(String(100), nullable=True)
    from_user_id = Column(String(100), nullable=True)
    from_username = Column(String(100), nullable=True)
    follower_count = Column(Integer, nullable=True)
    text = Column(Text, nullable=True)

    mention_type = Column(
        SQLEnum(MentionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=MentionType.STORY_MENTION,
    )
    mention_context = Column(
        SQLEnum(MentionContext, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=MentionContext.UNKNOWN,
    )
    sentiment_score = Column(Float, nullable=True)
    priority = Column(
        SQLEnum(EngagementPriority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=EngagementPriority.LOW,
    )
    requires_attention = Column(Boolean, nullable=False, default=False)
    mention_metadata = Column("metadata", JSON, nullable=False, default=dict)

    occurred_at = Column(DateTime, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    responded = Column(Boolean, nullable=False, default=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "platform_mention_id", name="uq_mention_account_platform_id"),
    )

    def mark_responded(self) -> None:
        self.responded = True
        self.responded_at = utcnow()
