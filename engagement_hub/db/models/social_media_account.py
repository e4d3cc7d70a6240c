"""
Social Media Account Model - a vendor's connected Instagram/Facebook account
"""
import enum
from datetime import timedelta

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Enum as SQLEnum, ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base


class SocialPlatform(str, enum.Enum):
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    PENDING_APPROVAL = "pending_approval"


class SocialMediaAccount(Base):
    """Connected account; webhook entries are matched on platform_account_id"""

    __tablename__ = "social_media_accounts"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)

    platform = Column(
        SQLEnum(SocialPlatform, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SocialPlatform.INSTAGRAM,
    )
    platform_account_id = Column(String(100), nullable=False)
    username = Column(String(100), nullable=True)

    access_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    token_refreshed_at = Column(DateTime, nullable=True)

    status = Column(
        SQLEnum(AccountStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=AccountStatus.ACTIVE,
        index=True,
    )
    last_error = Column(String(1000), nullable=True)
    last_error_at = Column(DateTime, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", lazy="joined")

    __table_args__ = (
        UniqueConstraint("platform", "platform_account_id", name="uq_account_platform_id"),
        Index("ix_accounts_platform_status", "platform", "status"),
    )

    def mark_error(self, message: str) -> None:
        self.status = AccountStatus.ERROR
        self.last_error = message[:1000]
        self.last_error_at = utcnow()

    def activate(self) -> None:
        self.status = AccountStatus.ACTIVE
        self.last_error = None
        self.last_error_at = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def token_expired(self, now=None) -> bool:
        now = now or utcnow()
        return self.expires_at is not None and self.expires_at <= now

    def token_needs_refresh(self, window: timedelta, now=None) -> bool:
        """Token still valid but expiring inside ``window``"""
        now = now or utcnow()
        if self.expires_at is None or self.token_expired(now):
            return False
        return self.expires_at - now <= window

    def token_refreshable(self, min_age: timedelta, now=None) -> bool:
        """Instagram only refreshes long-lived tokens that are at least a day old."""
        now = now or utcnow()
        if not self.access_token or self.token_expired(now):
            return False
        issued_at = self.token_refreshed_at or self.created_at
        return issued_at is None or now - issued_at >= min_age
