"""
Tests for NotificationService - logging and vendor webhook delivery
"""
import json

import httpx
import pytest

from engagement_hub.core.circuit_breaker import CircuitState, get_notification_circuit_breaker
from engagement_hub.db.models.vendor import Vendor
from engagement_hub.domain.services.notification_service import NotificationService, build_notification


def _vendor(url: str | None = "https://vendor.example.com/hooks/engagement") -> Vendor:
    return Vendor(id=5, name="shop-5", display_name="Corner Shop", notification_webhook_url=url)


class TestBuildNotification:

    @pytest.mark.unit
    def test_titles_and_priority(self) -> None:
        notification = build_notification(5, "negative_comment", {"comment_id": 1})
        assert notification.title == "Negative Comment"
        assert notification.priority == "urgent"

    @pytest.mark.unit
    def test_high_priority_data_is_urgent(self) -> None:
        assert build_notification(5, "new_mention", {"priority": "high"}).priority == "urgent"
        assert build_notification(5, "new_mention", {}).priority == "normal"

    @pytest.mark.unit
    def test_unknown_type_title(self) -> None:
        assert build_notification(5, "weekly_digest", {}).title == "Weekly Digest"


class TestSend:

    @pytest.mark.asyncio
    async def test_without_webhook_only_logs(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no delivery expected")

        service = NotificationService(transport=httpx.MockTransport(handler))
        assert await service.send(_vendor(url=None), "new_comment", {"comment_id": 1}) is False

    @pytest.mark.asyncio
    async def test_delivers_json_payload(self) -> None:
        received = {}

        def handler(request: httpx.Request) -> httpx.Response:
            received["url"] = str(request.url)
            received["agent"] = request.headers["User-Agent"]
            received["body"] = json.loads(request.content)
            return httpx.Response(200)

        service = NotificationService(transport=httpx.MockTransport(handler))
        delivered = await service.send(_vendor(), "milestone_achieved", {"milestone_type": "likes_100"})

        assert delivered is True
        assert received["url"] == "https://vendor.example.com/hooks/engagement"
        assert received["agent"].startswith("engagement-hub-notifications")
        body = received["body"]
        assert body["vendor_id"] == 5
        assert body["vendor_name"] == "Corner Shop"
        assert body["event_type"] == "milestone_achieved"
        assert body["title"] == "Milestone Achieved"
        assert body["priority"] == "normal"
        assert body["data"] == {"milestone_type": "likes_100"}
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_rejected_delivery_returns_false(self) -> None:
        service = NotificationService(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        assert await service.send(_vendor(), "new_comment", {}) is False
        assert get_notification_circuit_breaker().snapshot()["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_open_breaker_skips_delivery(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        service = NotificationService(transport=httpx.MockTransport(handler))
        for _ in range(10):
            await service.send(_vendor(), "new_comment", {})

        assert get_notification_circuit_breaker().state == CircuitState.OPEN
        assert await service.send(_vendor(), "new_comment", {}) is False
        assert len(calls) == 10
