"""
Notification Service - vendor notifications for engagement activity

A notification is always logged. When the vendor has a
``notification_webhook_url`` it is also POSTed there as JSON, behind the
notification circuit breaker.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from engagement_hub.core.circuit_breaker import get_notification_circuit_breaker
from engagement_hub.core.config import Settings, settings as default_settings
from engagement_hub.core.exceptions import NotificationDeliveryError
from engagement_hub.core.logging import get_logger
from engagement_hub.db.models.vendor import Vendor

logger = get_logger(__name__)

USER_AGENT = "engagement-hub-notifications/1.0"

NOTIFICATION_TITLES = {
    "new_comment": "New Comment",
    "negative_comment": "Negative Comment",
    "priority_comment": "Comment Needs Attention",
    "new_mention": "Brand Mention",
    "new_message": "New Direct Message",
    "milestone_achieved": "Milestone Achieved",
}

URGENT_TYPES = frozenset({"negative_comment", "priority_comment"})


@dataclass
class Notification:
    vendor_id: int
    notification_type: str
    title: str
    priority: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self, vendor_name: str | None = None) -> dict[str, Any]:
        return {
            "vendor_id": self.vendor_id,
            "vendor_name": vendor_name,
            "event_type": self.notification_type,
            "title": self.title,
            "priority": self.priority,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": self.data,
        }


def build_notification(vendor_id: int, notification_type: str, data: dict[str, Any]) -> Notification:
    priority = "normal"
    if notification_type in URGENT_TYPES or data.get("priority") == "high":
        priority = "urgent"
    return Notification(
        vendor_id=vendor_id,
        notification_type=notification_type,
        title=NOTIFICATION_TITLES.get(notification_type, notification_type.replace("_", " ").title()),
        priority=priority,
        data=data,
    )


class NotificationService:
    """Deliver vendor notifications"""

    def __init__(self, config: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config or default_settings
        self._transport = transport
        self._circuit_breaker = get_notification_circuit_breaker()

    async def send(self, vendor: Vendor, notification_type: str, data: dict[str, Any]) -> bool:
        """
        Log and deliver one notification.

        Returns True when it was delivered to the vendor webhook, False when
        only logged (no webhook configured) or when delivery failed. Delivery
        errors are logged, never raised.
        """
        notification = build_notification(vendor.id, notification_type, data)
        logger.info(
            "Vendor notification",
            extra_data={
                "vendor_id": vendor.id,
                "type": notification_type,
                "priority": notification.priority,
                "title": notification.title,
            },
        )

        url = vendor.notification_webhook_url
        if not url:
            return False

        try:
            await self._circuit_breaker.execute(self._post, url, notification.to_payload(vendor.label))
        except Exception as e:
            logger.error(
                "Failed to deliver vendor notification",
                extra_data={"vendor_id": vendor.id, "type": notification_type, "error": str(e)},
            )
            return False
        return True

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(
            timeout=self.config.NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS,
            transport=self._transport,
        ) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"User-Agent": USER_AGENT},
            )
            if response.status_code >= 400:
                raise NotificationDeliveryError(url, response.status_code)
