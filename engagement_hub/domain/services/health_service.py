"""
Readiness checks - database, Celery broker and webhook pipeline.

Liveness lives in main.py and checks nothing; readiness checks every
external dependency and reports the webhook pipeline verdict alongside.
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from engagement_hub.core.config import settings
from engagement_hub.core.logging import get_logger
from engagement_hub.db.database import AsyncSessionLocal
from engagement_hub.domain.services.webhook_event_service import WebhookEventService

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# no infrastructure details in the public response
_ERROR_DB = "error: db_unavailable"
_ERROR_CELERY = "error: celery_broker_unavailable"
_ERROR_PIPELINE = "error: pipeline_stats_unavailable"


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database readiness check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_celery_broker() -> str:
    """PING the Redis broker the workers consume from"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker readiness check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def _check_webhook_pipeline() -> str:
    try:
        async with AsyncSessionLocal() as session:
            result = await WebhookEventService(session).health_check()
        return result["status"]
    except Exception as e:
        logger.warning("Webhook pipeline health check failed", extra_data={"error": str(e)})
        return _ERROR_PIPELINE


async def check_readiness() -> dict[str, Any]:
    """
    ``status`` is "healthy" when the database and the broker answer,
    "degraded" otherwise. ``webhook_pipeline`` is reported but does not
    make the instance unready.
    """
    checks = {
        "db": await _check_db(),
        "celery": await _check_celery_broker(),
    }
    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    pipeline = await _check_webhook_pipeline() if checks["db"] == _CHECK_OK else _ERROR_PIPELINE
    return {"status": overall_status, **checks, "webhook_pipeline": pipeline}
