"""
Admin endpoints for the webhook event store.

Read-only monitoring (stats, health, attention queue, abandoned events,
hourly volume, circuit breakers) plus a manual retry for failed events.
"""
from datetime import date, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.api.dependencies.admin_auth import require_admin_api_key
from engagement_hub.core.circuit_breaker import (
    CircuitBreaker,
    get_graph_api_circuit_breaker,
    get_notification_circuit_breaker,
)
from engagement_hub.core.exceptions import EventNotRetryableError
from engagement_hub.core.logging import get_logger
from engagement_hub.db.database import get_db
from engagement_hub.db.models.webhook_event import EventStatus, WebhookEvent
from engagement_hub.domain.event_classifier import requires_immediate_attention
from engagement_hub.domain.retry_policy import next_retry_at
from engagement_hub.domain.services.dispatcher import EventDispatcher
from engagement_hub.domain.services.webhook_event_service import WebhookEventService

logger = get_logger(__name__)

router = APIRouter()

_ADMIN_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Wrong API key"},
}


# ─── Pydantic models ────────────────────────────────────────────────────────

class WebhookEventResponse(BaseModel):
    id: int
    account_id: int | None
    event_type: str
    priority: str
    field_name: str | None
    status: str
    processing_attempts: int
    last_error: str | None
    occurred_at: datetime | None
    last_attempted_at: datetime | None
    processed_at: datetime | None
    next_retry_at: datetime | None = None
    processing_seconds: float | None = None
    requires_attention: bool = False
    subject_type: str | None = None
    subject_id: int | None = None

    class Config:
        from_attributes = True

    @classmethod
    def from_event(cls, event: WebhookEvent) -> "WebhookEventResponse":
        return cls(
            id=event.id,
            account_id=event.account_id,
            event_type=event.event_type.value,
            priority=event.priority.value,
            field_name=event.field_name,
            status=event.status.value,
            processing_attempts=event.processing_attempts or 0,
            last_error=event.last_error,
            occurred_at=event.occurred_at,
            last_attempted_at=event.last_attempted_at,
            processed_at=event.processed_at,
            next_retry_at=next_retry_at(event),
            processing_seconds=event.processing_seconds,
            requires_attention=requires_immediate_attention(event.event_type, event.priority),
            subject_type=event.subject_type,
            subject_id=event.subject_id,
        )


class HealthResponse(BaseModel):
    status: str = Field(description="healthy | warning | unhealthy")
    message: str
    total_events: int
    error_rate: float | None = None
    failure_rate: float | None = None


class RetryResponse(BaseModel):
    event_id: int
    previous_status: str
    task: str | None = Field(description="Enqueued task, None when the event needs manual review")


class HourlyVolume(BaseModel):
    hour: int
    count: int


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float


# ─── Monitoring ─────────────────────────────────────────────────────────────

@router.get(
    "/stats",
    summary="Webhook processing statistics",
    description="Totals by status, type and priority with success rate and average processing time.",
    responses={200: {"description": "Statistics for the period"}, **_ADMIN_RESPONSES},
)
async def get_processing_stats(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    hours: int = Query(default=24, ge=1, le=24 * 90, description="Look-back window in hours"),
) -> dict[str, Any]:
    return await WebhookEventService(db).processing_stats(timedelta(hours=hours))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Webhook pipeline health",
    description="healthy / warning / unhealthy from the error and processing-failure rates.",
    responses={200: {"description": "Health verdict"}, **_ADMIN_RESPONSES},
)
async def get_pipeline_health(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    hours: int = Query(default=1, ge=1, le=168),
) -> HealthResponse:
    return HealthResponse(**await WebhookEventService(db).health_check(timedelta(hours=hours)))


@router.get(
    "/attention",
    response_model=list[WebhookEventResponse],
    summary="Events requiring attention",
    description="Unprocessed errors, direct messages, mentions and high/critical events, oldest first.",
    responses={200: {"description": "Attention queue"}, **_ADMIN_RESPONSES},
)
async def get_attention_queue(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[WebhookEventResponse]:
    events = await WebhookEventService(db).get_events_requiring_attention(limit)
    return [WebhookEventResponse.from_event(e) for e in events]


@router.get(
    "/abandoned",
    response_model=list[WebhookEventResponse],
    summary="Abandoned events",
    description="Unprocessed events that reached their attempt ceiling and will not be retried.",
    responses={200: {"description": "Abandoned events, latest attempt first"}, **_ADMIN_RESPONSES},
)
async def get_abandoned_events(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[WebhookEventResponse]:
    events = await WebhookEventService(db).get_abandoned_events(limit)
    return [WebhookEventResponse.from_event(e) for e in events]


@router.get(
    "/volume",
    response_model=list[HourlyVolume],
    summary="Hourly event volume",
    description="24 hourly buckets of events that occurred on the given UTC day (default today).",
    responses={200: {"description": "Hourly counts"}, **_ADMIN_RESPONSES},
)
async def get_hourly_volume(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    day: date | None = Query(default=None),
) -> list[HourlyVolume]:
    buckets = await WebhookEventService(db).event_volume_by_hour(day)
    return [HourlyVolume(**bucket) for bucket in buckets]


def _cb_to_response(cb: CircuitBreaker) -> CircuitBreakerStatusResponse:
    return CircuitBreakerStatusResponse(**cb.snapshot())


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="Circuit breaker status",
    description="State of the Graph API and vendor notification circuit breakers.",
    responses={200: {"description": "Circuit breaker states"}, **_ADMIN_RESPONSES},
)
async def get_circuit_breaker_status(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    # make sure the known breakers are registered before listing
    get_graph_api_circuit_breaker("instagram")
    get_graph_api_circuit_breaker("facebook")
    get_notification_circuit_breaker()
    return [_cb_to_response(cb) for cb in CircuitBreaker.all_instances()]


# ─── Manual retry ───────────────────────────────────────────────────────────

@router.post(
    "/{event_id}/retry",
    response_model=RetryResponse,
    summary="Re-dispatch a webhook event",
    description=(
        "Enqueues the event's worker task again without resetting its attempt count. "
        "Processed and abandoned events are refused."
    ),
    responses={
        200: {"description": "Event re-dispatched"},
        404: {"description": "Event not found"},
        409: {"description": "Event is processed or abandoned"},
        **_ADMIN_RESPONSES,
    },
)
async def retry_event(
    event_id: int,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> RetryResponse:
    event = await WebhookEventService(db).get(event_id)
    previous_status = event.status
    if previous_status in (EventStatus.PROCESSED, EventStatus.ABANDONED):
        raise EventNotRetryableError(event_id, previous_status.value)

    task = await EventDispatcher(db).dispatch(event)
    logger.info(
        "Manual webhook event retry",
        extra_data={"event_id": event_id, "previous_status": previous_status.value, "task": task},
    )
    return RetryResponse(event_id=event_id, previous_status=previous_status.value, task=task)
