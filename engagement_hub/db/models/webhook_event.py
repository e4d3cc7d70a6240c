"""
Webhook Event Model - one row per classified change delivered by the platform.

Rows are created on receipt, updated by workers on every processing attempt
and only removed by retention cleanup.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON, Enum as SQLEnum, ForeignKey, Index

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base


class EventType(str, enum.Enum):
    """Closed set of event kinds the pipeline knows how to route"""
    COMMENT = "comment"
    LIKE = "like"
    UNLIKE = "unlike"
    SHARE = "share"
    SAVE = "save"
    UNSAVE = "unsave"
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"
    MENTION = "mention"
    STORY = "story"
    STORY_VIEW = "story_view"
    STORY_REPLY = "story_reply"
    DIRECT_MESSAGE = "direct_message"
    MEDIA = "media"
    POST_CREATED = "post_created"
    POST_UPDATED = "post_updated"
    POST_DELETED = "post_deleted"
    UNKNOWN = "unknown"
    ERROR = "error"


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventStatus(str, enum.Enum):
    """Derived processing state; not stored"""
    PENDING = "pending"
    FAILED = "failed"
    PROCESSED = "processed"
    ABANDONED = "abandoned"


class WebhookEvent(Base):
    __tablename__ = "social_media_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=True, index=True)

    event_type = Column(
        SQLEnum(EventType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    priority = Column(
        SQLEnum(Priority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=Priority.LOW,
    )
    # raw "field" of the change, kept verbatim for unknown events
    field_name = Column(String(100), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime, nullable=False, default=utcnow)

    # comment / mention / message row derived from this event
    subject_type = Column(String(30), nullable=True)
    subject_id = Column(Integer, nullable=True)

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    processing_result = Column(JSON, nullable=True)

    processing_attempts = Column(Integer, nullable=False, default=0)
    last_attempted_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_webhook_events_processed_attempts", "processed", "processing_attempts"),
        Index("ix_webhook_events_type_created", "event_type", "created_at"),
        Index("ix_webhook_events_priority_processed", "priority", "processed"),
    )

    @property
    def status(self) -> EventStatus:
        from engagement_hub.domain.retry_policy import is_abandoned

        if self.processed:
            return EventStatus.PROCESSED
        if is_abandoned(self.event_type, self.processing_attempts or 0):
            return EventStatus.ABANDONED
        if self.processing_attempts:
            return EventStatus.FAILED
        return EventStatus.PENDING

    @property
    def processing_seconds(self) -> float | None:
        if not self.processed_at or not self.occurred_at:
            return None
        return (self.processed_at - self.occurred_at).total_seconds()

    def __repr__(self) -> str:
        return f"<WebhookEvent id={self.id} type={self.event_type} status={self.status.value}>"
