"""
End-to-end tests for /api/webhooks/instagram (and the facebook mount)

Covers:
- subscription challenge (GET) with right / wrong / unset verify token
- signature enforcement (missing, mismatched, unset app secret)
- malformed bodies
- one comments change -> exactly one comment row and one process_comment enqueue
- a malformed entry never costs its sibling entries
"""
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.core.config import settings
from engagement_hub.db.models.social_media_comment import SocialMediaComment
from engagement_hub.db.models.webhook_event import EventType, WebhookEvent

from tests.conftest import comment_payload, signed_request

WEBHOOK_URL = "/api/webhooks/instagram"


class TestSubscriptionVerification:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_challenge_echoed(self, test_client: AsyncClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "INSTAGRAM_VERIFY_TOKEN", "verify-me")

        response = await test_client.get(WEBHOOK_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": "verify-me",
            "hub.challenge": "1158201444",
        })

        assert response.status_code == 200
        assert response.text == "1158201444"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_wrong_token_forbidden(self, test_client: AsyncClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "INSTAGRAM_VERIFY_TOKEN", "verify-me")

        response = await test_client.get(WEBHOOK_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": "guess",
            "hub.challenge": "1",
        })

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ERR_2003"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unset_token_never_matches(self, test_client: AsyncClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "INSTAGRAM_VERIFY_TOKEN", "")

        response = await test_client.get(WEBHOOK_URL, params={"hub.verify_token": "", "hub.challenge": "1"})

        assert response.status_code == 403


class TestSignatureEnforcement:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_signature(self, test_client: AsyncClient, app_secret, mock_tasks) -> None:
        response = await test_client.post(
            WEBHOOK_URL, content=json.dumps(comment_payload()), headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "ERR_2001"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tampered_body(
        self, test_client: AsyncClient, db_session: AsyncSession, sample_account, app_secret, mock_tasks
    ) -> None:
        body, headers = signed_request(comment_payload())
        tampered = body.replace(b"Love", b"Hate")

        response = await test_client.post(WEBHOOK_URL, content=tampered, headers=headers)

        assert response.status_code == 401
        count = await db_session.execute(select(func.count(WebhookEvent.id)))
        assert count.scalar_one() == 0
        mock_tasks.process_comment.delay.assert_not_called()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unset_app_secret_rejects(self, test_client: AsyncClient, monkeypatch) -> None:
        body, headers = signed_request(comment_payload(), secret="")
        monkeypatch.setattr(settings, "INSTAGRAM_APP_SECRET", "")

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 401


class TestMalformedBodies:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_json(self, test_client: AsyncClient, app_secret) -> None:
        body, headers = signed_request(b"{not json")

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_2002"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_top_level_array(self, test_client: AsyncClient, app_secret) -> None:
        body, headers = signed_request([1, 2, 3])

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 400


class TestDelivery:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_comment_stored_and_enqueued_once(
        self, test_client: AsyncClient, db_session: AsyncSession, sample_account, app_secret, mock_tasks
    ) -> None:
        body, headers = signed_request(comment_payload())

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"status": "success", "events": 1}

        comments = (await db_session.execute(select(SocialMediaComment))).scalars().all()
        assert len(comments) == 1
        event = (await db_session.execute(select(WebhookEvent))).scalar_one()
        assert event.event_type == EventType.COMMENT
        assert event.subject_id == comments[0].id
        mock_tasks.process_comment.delay.assert_called_once_with(comments[0].id, event.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_account_still_200(
        self, test_client: AsyncClient, sample_account, app_secret, mock_tasks
    ) -> None:
        body, headers = signed_request(comment_payload(account_id="not-connected"))

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["events"] == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_broken_change_still_200(
        self, test_client: AsyncClient, sample_account, app_secret, mock_tasks
    ) -> None:
        payload = {"entry": [{"id": sample_account.platform_account_id, "changes": [
            {"field": "comments", "value": {"text": "no id"}},
        ]}]}
        body, headers = signed_request(payload)

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["events"] == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_entry", [
        {"time": 10**20, "changes": [{"field": "comments", "value": {"id": "c-2", "text": "late"}}]},
        {"changes": 5},
        {"messaging": "not a list"},
    ])
    async def test_bad_entry_keeps_valid_sibling(
        self, test_client: AsyncClient, db_session: AsyncSession, sample_account, app_secret, mock_tasks,
        bad_entry,
    ) -> None:
        payload = comment_payload(comment_id="c-1")
        payload["entry"].append({"id": sample_account.platform_account_id, **bad_entry})
        body, headers = signed_request(payload)

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        kept = (await db_session.execute(
            select(SocialMediaComment).where(SocialMediaComment.platform_comment_id == "c-1")
        )).scalar_one()
        enqueued = [call.args[0] for call in mock_tasks.process_comment.delay.call_args_list]
        assert kept.id in enqueued

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_facebook_mount(
        self, test_client: AsyncClient, sample_account, app_secret, mock_tasks
    ) -> None:
        body, headers = signed_request(comment_payload())

        response = await test_client.post("/api/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 200
        mock_tasks.process_comment.delay.assert_called_once()
