"""
Database Models
"""
from engagement_hub.db.models.vendor import Vendor
from engagement_hub.db.models.social_media_account import SocialMediaAccount
from engagement_hub.db.models.social_media_post import SocialMediaPost
from engagement_hub.db.models.webhook_event import WebhookEvent
from engagement_hub.db.models.social_media_comment import SocialMediaComment
from engagement_hub.db.models.social_media_mention import SocialMediaMention
from engagement_hub.db.models.social_media_message import SocialMediaMessage
from engagement_hub.db.models.engagement import SocialMediaEngagementEvent, SocialMediaMilestone

__all__ = [
    "Vendor",
    "SocialMediaAccount",
    "SocialMediaPost",
    "WebhookEvent",
    "SocialMediaComment",
    "SocialMediaMention",
    "SocialMediaMessage",
    "SocialMediaEngagementEvent",
    "SocialMediaMilestone",
]
