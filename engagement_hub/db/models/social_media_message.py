"""
Social Media Message Model - direct messages and story replies
"""
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, Text, JSON, Enum as SQLEnum, ForeignKey,
    UniqueConstraint,
)

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base
from engagement_hub.db.models.social_media_mention import EngagementPriority


class MessageType(str, enum.Enum):
    DIRECT_MESSAGE = "direct_message"
    STORY_REPLY = "story_reply"
    COMMENT_REPLY = "comment_reply"
    AUTOMATED_MESSAGE = "automated_message"


class SocialMediaMessage(Base):
    __tablename__ = "social_media_messages"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=False, index=True)

    platform_message_id = Column(String(200), nullable=False)
    sender_id = Column(String(100), nullable=True)
    recipient_id = Column(String(100), nullable=True)
    message_text = Column(Text, nullable=True)
    message_type = Column(
        SQLEnum(MessageType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=MessageType.DIRECT_MESSAGE,
    )

    sentiment_score = Column(Float, nullable=True)
    priority = Column(
        SQLEnum(EngagementPriority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=EngagementPriority.LOW,
    )
    message_metadata = Column("metadata", JSON, nullable=False, default=dict)

    received_at = Column(DateTime, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    responded = Column(Boolean, nullable=False, default=False)
    responded_at = Column(DateTime, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "platform_message_id", name="uq_message_account_platform_id"),
    )

    @property
    def requires_response(self) -> bool:
        from engagement_hub.domain.sentiment import message_requires_response

        if self.responded:
            return False
        return message_requires_response(self.message_text, self.priority, self.message_type)
