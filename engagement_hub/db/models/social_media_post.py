"""
Social Media Post Model - published media tracked for engagement counters
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum, ForeignKey, UniqueConstraint

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base


class PostContentType(str, enum.Enum):
    POST = "post"
    REEL = "reel"
    CAROUSEL = "carousel"
    STORY = "story"

    @classmethod
    def from_media_type(cls, media_type: str | None) -> "PostContentType":
        """Map Graph API media_type (IMAGE, VIDEO, CAROUSEL_ALBUM) to a content type"""
        if media_type == "VIDEO":
            return cls.REEL
        if media_type == "CAROUSEL_ALBUM":
            return cls.CAROUSEL
        return cls.POST


class SocialMediaPost(Base):
    __tablename__ = "social_media_posts"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("social_media_accounts.id"), nullable=False, index=True)
    platform_post_id = Column(String(100), nullable=False)

    content_type = Column(
        SQLEnum(PostContentType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=PostContentType.POST,
    )
    caption = Column(Text, nullable=True)
    permalink = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="published")

    likes_count = Column(Integer, nullable=False, default=0)
    comments_count = Column(Integer, nullable=False, default=0)
    shares_count = Column(Integer, nullable=False, default=0)
    reach = Column(Integer, nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)

    published_at = Column(DateTime, nullable=True)
    last_engagement_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "platform_post_id", name="uq_post_account_platform_id"),
    )
