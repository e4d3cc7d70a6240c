"""
Instagram / Facebook webhook receiver.

GET answers the subscription challenge, POST accepts signed change
deliveries. The same router is mounted for both platforms since Meta uses
one payload shape for them.
"""
import hmac
import json

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.api.dependencies.webhook_auth import require_valid_signature
from engagement_hub.core.config import settings
from engagement_hub.core.exceptions import MalformedPayloadError, WebhookVerificationError
from engagement_hub.core.logging import get_logger
from engagement_hub.db.database import get_db
from engagement_hub.domain.services.webhook_ingestion_service import WebhookIngestionService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_class=PlainTextResponse,
    summary="Webhook subscription verification",
    description="Echoes hub.challenge when hub.verify_token matches the configured token.",
    responses={
        200: {"description": "Challenge echoed as plain text"},
        403: {"description": "Verify token mismatch"},
    },
)
async def verify_subscription(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
) -> PlainTextResponse:
    expected = settings.INSTAGRAM_VERIFY_TOKEN
    if expected and hub_verify_token and hmac.compare_digest(hub_verify_token, expected):
        logger.info("Webhook subscription verified", extra_data={"hub_mode": hub_mode})
        return PlainTextResponse(hub_challenge or "", status_code=200)

    logger.warning("Webhook subscription verification failed", extra_data={"hub_mode": hub_mode})
    raise WebhookVerificationError()


@router.post(
    "",
    summary="Receive webhook deliveries",
    description=(
        "Verifies X-Hub-Signature-256 over the raw body, stores every change as a "
        "webhook event and dispatches processing after commit."
    ),
    responses={
        200: {"description": "Payload accepted"},
        400: {"description": "Body is not a JSON object"},
        401: {"description": "Missing or invalid signature"},
    },
)
async def receive_webhook(
    body: bytes = Depends(require_valid_signature),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Webhook body is not valid JSON", extra_data={"error": str(e)})
        raise MalformedPayloadError(str(e))

    if not isinstance(payload, dict):
        raise MalformedPayloadError("top-level JSON value must be an object")

    result = await WebhookIngestionService(db).process_payload(payload)
    return {"status": "success", "events": result.event_count}
