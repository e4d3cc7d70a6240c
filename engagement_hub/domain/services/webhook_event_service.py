"""
Webhook Event Service - persistence and processing state of webhook events.

Events are written once on receipt and updated by workers after every
attempt. Retry eligibility and abandonment follow domain.retry_policy.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_hub.core.config import Settings, settings as default_settings
from engagement_hub.core.exceptions import EventNotFoundError
from engagement_hub.core.logging import get_logger, log_operation
from engagement_hub.db.compat import hour_of_day, utcnow
from engagement_hub.db.models.webhook_event import EventType, Priority, WebhookEvent
from engagement_hub.domain.event_classifier import determine_priority
from engagement_hub.domain.retry_policy import (
    DEFAULT_MAX_ATTEMPTS,
    MAX_ATTEMPTS_BY_TYPE,
    event_retry_eligible,
    is_abandoned,
    max_attempts,
)

logger = get_logger(__name__)

_MAX_ERROR_LENGTH = 4000


def abandoned_clause():
    """SQL condition matching unprocessed events at or past their attempt ceiling"""
    special_types = list(MAX_ATTEMPTS_BY_TYPE)
    per_type = [
        and_(WebhookEvent.event_type == event_type, WebhookEvent.processing_attempts >= ceiling)
        for event_type, ceiling in MAX_ATTEMPTS_BY_TYPE.items()
    ]
    per_type.append(
        and_(
            WebhookEvent.event_type.notin_(special_types),
            WebhookEvent.processing_attempts >= DEFAULT_MAX_ATTEMPTS,
        )
    )
    return and_(WebhookEvent.processed.is_(False), or_(*per_type))


class WebhookEventService:
    """Store, query and update webhook events"""

    def __init__(self, db: AsyncSession, config: Settings | None = None):
        self.db = db
        self.config = config or default_settings

    async def record(
        self,
        *,
        account_id: int | None,
        event_type: EventType,
        payload: dict[str, Any],
        field_name: str | None = None,
        occurred_at: datetime | None = None,
    ) -> WebhookEvent:
        """Add a new event to the session; the caller commits."""
        event = WebhookEvent(
            account_id=account_id,
            event_type=event_type,
            priority=determine_priority(event_type),
            field_name=field_name,
            payload=payload,
            occurred_at=occurred_at or utcnow(),
            processed=False,
            processing_attempts=0,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def record_error(
        self,
        *,
        account_id: int | None,
        payload: dict[str, Any],
        error: str,
        field_name: str | None = None,
        occurred_at: datetime | None = None,
    ) -> WebhookEvent:
        """Store a change that failed during ingestion as an ``error`` event.

        Error events get a single attempt, so this one is recorded as already
        attempted and is never picked up for retry.
        """
        now = utcnow()
        event = WebhookEvent(
            account_id=account_id,
            event_type=EventType.ERROR,
            priority=Priority.CRITICAL,
            field_name=field_name,
            payload=payload,
            occurred_at=occurred_at or now,
            processed=False,
            processing_attempts=1,
            last_attempted_at=now,
            last_error=error[:_MAX_ERROR_LENGTH],
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def get(self, event_id: int) -> WebhookEvent:
        result = await self.db.execute(select(WebhookEvent).where(WebhookEvent.id == event_id))
        event = result.scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    async def mark_processed(self, event_id: int, result: dict[str, Any] | None = None) -> WebhookEvent:
        event = await self.get(event_id)
        event.processed = True
        event.processed_at = utcnow()
        event.processing_result = result
        await self.db.commit()
        return event

    async def mark_failed(self, event_id: int, error: str) -> WebhookEvent:
        """Count a failed attempt. Attempts never go past the type's ceiling."""
        event = await self.get(event_id)
        ceiling = max_attempts(event.event_type)
        event.processed = False
        event.processing_attempts = min((event.processing_attempts or 0) + 1, ceiling)
        event.last_error = error[:_MAX_ERROR_LENGTH]
        event.last_attempted_at = utcnow()
        await self.db.commit()

        if is_abandoned(event.event_type, event.processing_attempts):
            logger.error(
                "Webhook event abandoned after reaching attempt ceiling",
                extra_data={
                    "event_id": event.id,
                    "event_type": event.event_type.value,
                    "attempts": event.processing_attempts,
                    "error": event.last_error,
                },
            )
        else:
            logger.warning(
                "Webhook event processing failed",
                extra_data={
                    "event_id": event.id,
                    "event_type": event.event_type.value,
                    "attempts": event.processing_attempts,
                    "max_attempts": ceiling,
                    "error": event.last_error,
                },
            )
        return event

    async def get_retry_candidates(
        self,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[WebhookEvent]:
        """Failed events below their ceiling whose backoff has elapsed"""
        now = now or utcnow()
        limit = limit or self.config.WEBHOOK_RETRY_BATCH_SIZE
        result = await self.db.execute(
            select(WebhookEvent)
            .where(
                WebhookEvent.processed.is_(False),
                WebhookEvent.processing_attempts > 0,
                ~abandoned_clause(),
            )
            .order_by(WebhookEvent.last_attempted_at)
            .limit(limit * 2)
        )
        candidates = [event for event in result.scalars().all() if event_retry_eligible(event, now)]
        return candidates[:limit]

    async def get_events_requiring_attention(self, limit: int = 50) -> list[WebhookEvent]:
        result = await self.db.execute(
            select(WebhookEvent)
            .where(
                WebhookEvent.processed.is_(False),
                or_(
                    WebhookEvent.priority.in_([Priority.HIGH, Priority.CRITICAL]),
                    WebhookEvent.event_type.in_(
                        [EventType.ERROR, EventType.DIRECT_MESSAGE, EventType.MENTION]
                    ),
                ),
            )
            .order_by(WebhookEvent.occurred_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_abandoned_events(self, limit: int = 50) -> list[WebhookEvent]:
        result = await self.db.execute(
            select(WebhookEvent)
            .where(abandoned_clause())
            .order_by(WebhookEvent.last_attempted_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def processing_stats(
        self,
        period: timedelta = timedelta(hours=24),
        now: datetime | None = None,
    ) -> dict[str, Any]:
        since = (now or utcnow()) - period
        in_period = WebhookEvent.occurred_at > since

        total = await self._count(in_period)
        if total == 0:
            return {"total_events": 0}

        processed = await self._count(in_period, WebhookEvent.processed.is_(True))
        abandoned = await self._count(in_period, abandoned_clause())
        failed = await self._count(
            in_period,
            WebhookEvent.processed.is_(False),
            WebhookEvent.processing_attempts > 0,
        ) - abandoned
        pending = await self._count(
            in_period,
            WebhookEvent.processed.is_(False),
            WebhookEvent.processing_attempts == 0,
        )

        by_type = await self.db.execute(
            select(WebhookEvent.event_type, func.count(WebhookEvent.id))
            .where(in_period)
            .group_by(WebhookEvent.event_type)
        )
        by_priority = await self.db.execute(
            select(WebhookEvent.priority, func.count(WebhookEvent.id))
            .where(in_period)
            .group_by(WebhookEvent.priority)
        )

        processed_rows = await self.db.execute(
            select(WebhookEvent.occurred_at, WebhookEvent.processed_at).where(
                in_period,
                WebhookEvent.processed.is_(True),
                WebhookEvent.processed_at.is_not(None),
            )
        )
        durations = [
            (processed_at - occurred_at).total_seconds()
            for occurred_at, processed_at in processed_rows.all()
            if occurred_at and processed_at
        ]

        return {
            "total_events": total,
            "processed_events": processed,
            "failed_events": failed,
            "abandoned_events": abandoned,
            "pending_events": pending,
            "success_rate": round(processed / total * 100, 1),
            "events_by_type": {_enum_value(k): v for k, v in by_type.all()},
            "events_by_priority": {_enum_value(k): v for k, v in by_priority.all()},
            "average_processing_time": round(sum(durations) / len(durations), 2) if durations else 0,
        }

    async def health_check(
        self,
        period: timedelta = timedelta(hours=1),
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """healthy / warning / unhealthy from error and processing-failure rates"""
        since = (now or utcnow()) - period
        in_period = WebhookEvent.occurred_at > since

        total = await self._count(in_period)
        if total == 0:
            return {"status": "healthy", "message": "No recent webhook activity", "total_events": 0}

        errors = await self._count(in_period, WebhookEvent.event_type == EventType.ERROR)
        failures = await self._count(
            in_period,
            WebhookEvent.processing_attempts > 2,
            WebhookEvent.processed.is_(False),
        )
        error_rate = round(errors / total * 100, 1)
        failure_rate = round(failures / total * 100, 1)

        if error_rate > 10 or failure_rate > 5:
            status, message = "unhealthy", "High error rate"
        elif error_rate > 5 or failure_rate > 2:
            status, message = "warning", "Elevated error rate"
        else:
            status, message = "healthy", "Webhook processing is operating normally"

        if status != "healthy":
            message = f"{message}: {error_rate}% errors, {failure_rate}% processing failures"

        return {
            "status": status,
            "message": message,
            "error_rate": error_rate,
            "failure_rate": failure_rate,
            "total_events": total,
        }

    @log_operation("cleanup_old_webhook_events")
    async def cleanup_old_events(self, days: int | None = None, now: datetime | None = None) -> int:
        """Delete old events; error events are kept twice as long."""
        days = days or self.config.WEBHOOK_EVENT_RETENTION_DAYS
        now = now or utcnow()

        regular = await self.db.execute(
            delete(WebhookEvent).where(
                WebhookEvent.occurred_at < now - timedelta(days=days),
                WebhookEvent.event_type != EventType.ERROR,
            )
        )
        errors = await self.db.execute(
            delete(WebhookEvent).where(
                WebhookEvent.occurred_at < now - timedelta(days=days * 2),
                WebhookEvent.event_type == EventType.ERROR,
            )
        )
        await self.db.commit()

        deleted = (regular.rowcount or 0) + (errors.rowcount or 0)
        logger.info(
            "Cleaned up old webhook events",
            extra_data={"deleted": deleted, "retention_days": days},
        )
        return deleted

    async def event_volume_by_hour(self, day: date | None = None) -> list[dict[str, int]]:
        day = day or utcnow().date()
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)

        hour = hour_of_day(WebhookEvent.occurred_at)
        result = await self.db.execute(
            select(hour, func.count(WebhookEvent.id))
            .where(WebhookEvent.occurred_at >= start, WebhookEvent.occurred_at < end)
            .group_by(hour)
        )
        counts = {int(h): c for h, c in result.all() if h is not None}
        return [{"hour": h, "count": counts.get(h, 0)} for h in range(24)]

    async def _count(self, *conditions) -> int:
        result = await self.db.execute(select(func.count(WebhookEvent.id)).where(*conditions))
        return result.scalar_one()


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)
