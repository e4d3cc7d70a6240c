"""
Webhook signature verification for Instagram/Facebook deliveries.

The platform signs every POST body with the app secret and sends
``X-Hub-Signature-256: sha256=<hex digest>``. The digest is recomputed over
the raw request bytes and compared in constant time.

Usage:
    @router.post("")
    async def receive(
        ...,
        body: bytes = Depends(require_valid_signature),
    ):
        ...
"""
import hashlib
import hmac

from fastapi import Header, Request

from engagement_hub.core.config import settings
from engagement_hub.core.exceptions import WebhookSignatureError
from engagement_hub.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """``sha256=<hex>`` header value for a body"""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature_header: str | None, secret: str | None) -> bool:
    """
    True only for a well-formed header matching the body.

    An empty secret never verifies anything, so a misconfigured deployment
    rejects traffic instead of accepting it unsigned.
    """
    if not secret or not signature_header:
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(signature_header.encode("utf-8"), expected.encode("utf-8"))


async def require_valid_signature(
    request: Request,
    x_hub_signature_256: str | None = Header(None),
) -> bytes:
    """
    Dependency returning the raw body once its signature checks out.

    Raises WebhookSignatureError (401) when the header is missing, the app
    secret is not configured or the digest does not match.
    """
    body = await request.body()
    secret = settings.INSTAGRAM_APP_SECRET

    if not secret:
        logger.error("Webhook rejected - INSTAGRAM_APP_SECRET is not configured")
        raise WebhookSignatureError("app secret not configured")

    if not x_hub_signature_256:
        logger.warning("Webhook rejected - missing X-Hub-Signature-256 header")
        raise WebhookSignatureError("missing signature")

    if not verify_signature(body, x_hub_signature_256, secret):
        logger.warning(
            "Webhook rejected - signature mismatch",
            extra_data={"body_length": len(body)},
        )
        raise WebhookSignatureError("signature mismatch")

    return body
