"""
Domain Services
"""
from engagement_hub.domain.services.webhook_event_service import WebhookEventService
from engagement_hub.domain.services.milestone_service import MilestoneService
from engagement_hub.domain.services.dispatcher import EventDispatcher
from engagement_hub.domain.services.webhook_ingestion_service import WebhookIngestionService
from engagement_hub.domain.services.instagram_api import InstagramGraphClient
from engagement_hub.domain.services.notification_service import NotificationService

__all__ = [
    "WebhookEventService",
    "MilestoneService",
    "EventDispatcher",
    "WebhookIngestionService",
    "InstagramGraphClient",
    "NotificationService",
]
