"""
Retry/Backoff Policy for failed webhook events.

An event is retried while it is unprocessed, below its type's attempt
ceiling and past its backoff delay. Once the ceiling is reached the event
is abandoned: it stays in the store for operators but is never retried.
"""
from __future__ import annotations

import random
from datetime import datetime, timedelta

from engagement_hub.db.models.webhook_event import EventType

DEFAULT_MAX_ATTEMPTS = 3
MAX_ATTEMPTS_BY_TYPE: dict[EventType, int] = {
    EventType.ERROR: 1,
    EventType.DIRECT_MESSAGE: 5,
    EventType.MENTION: 5,
}

# (highest attempt count in tier, base delay)
BACKOFF_TIERS: tuple[tuple[int, timedelta], ...] = (
    (1, timedelta(minutes=5)),
    (3, timedelta(minutes=30)),
)
BACKOFF_CEILING = timedelta(hours=2)
MAX_JITTER_SECONDS = 60


def max_attempts(event_type: EventType) -> int:
    return MAX_ATTEMPTS_BY_TYPE.get(EventType(event_type), DEFAULT_MAX_ATTEMPTS)


def base_backoff(attempts: int) -> timedelta:
    for highest_attempt, delay in BACKOFF_TIERS:
        if attempts <= highest_attempt:
            return delay
    return BACKOFF_CEILING


def backoff_delay(attempts: int, jitter_seconds: int | None = None) -> timedelta:
    """Tiered delay (5 min / 30 min / 2 h) plus 0-60 s of random jitter.

    ``jitter_seconds`` pins the jitter, mostly for tests.
    """
    if jitter_seconds is None:
        jitter_seconds = random.randint(0, MAX_JITTER_SECONDS)
    return base_backoff(max(attempts, 0)) + timedelta(seconds=jitter_seconds)


def is_abandoned(event_type: EventType, attempts: int) -> bool:
    return attempts >= max_attempts(event_type)


def is_retry_eligible(
    event_type: EventType,
    *,
    processed: bool,
    attempts: int,
    last_attempted_at: datetime | None,
    now: datetime,
    jitter_seconds: int | None = None,
) -> bool:
    if processed or is_abandoned(event_type, attempts):
        return False
    if last_attempted_at is None:
        return True
    return last_attempted_at < now - backoff_delay(attempts, jitter_seconds)


def event_retry_eligible(event, now: datetime, jitter_seconds: int | None = None) -> bool:
    """``is_retry_eligible`` for a WebhookEvent row"""
    return is_retry_eligible(
        event.event_type,
        processed=bool(event.processed),
        attempts=event.processing_attempts or 0,
        last_attempted_at=event.last_attempted_at,
        now=now,
        jitter_seconds=jitter_seconds,
    )


def next_retry_at(event, jitter_seconds: int = 0) -> datetime | None:
    """Earliest time the event becomes eligible again, None when it never will"""
    attempts = event.processing_attempts or 0
    if event.processed or is_abandoned(event.event_type, attempts):
        return None
    if event.last_attempted_at is None:
        return None
    return event.last_attempted_at + backoff_delay(attempts, jitter_seconds)
