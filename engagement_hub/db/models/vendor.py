"""
Vendor Model - marketplace seller owning social media accounts
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON

from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base

# Preference flags understood by the notification pipeline
NOTIFICATION_PREFERENCE_KEYS = (
    "new_comment",
    "negative_comment",
    "priority_comment",
    "new_mention",
    "new_message",
    "milestone_achieved",
)


class Vendor(Base):
    """Marketplace seller; only the fields the webhook pipeline reads"""

    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    display_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)

    # {"new_comment": true, "new_mention": false, ...}
    notification_preferences = Column(JSON, nullable=False, default=dict)
    notification_webhook_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    def wants_notification(self, notification_type: str) -> bool:
        prefs = self.notification_preferences or {}
        return bool(prefs.get(notification_type))

    @property
    def label(self) -> str:
        return self.display_name or self.name
