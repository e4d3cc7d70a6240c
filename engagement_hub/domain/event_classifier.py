"""
Event Classifier

Maps a raw webhook change to a typed event and a priority. Pure functions,
no I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from engagement_hub.db.models.webhook_event import EventType, Priority

# "field" of an entry.changes[] item -> event kind
FIELD_EVENT_TYPES: dict[str, EventType] = {
    "comments": EventType.COMMENT,
    "live_comments": EventType.COMMENT,
    "likes": EventType.LIKE,
    "story_insights": EventType.STORY,
    "mentions": EventType.MENTION,
    "media": EventType.MEDIA,
}

_CRITICAL = {EventType.ERROR}
_HIGH = {EventType.DIRECT_MESSAGE, EventType.MENTION}
_MEDIUM = {EventType.COMMENT, EventType.STORY_REPLY}

EVENT_PRIORITIES: dict[EventType, Priority] = {
    event_type: (
        Priority.CRITICAL if event_type in _CRITICAL
        else Priority.HIGH if event_type in _HIGH
        else Priority.MEDIUM if event_type in _MEDIUM
        else Priority.LOW
    )
    for event_type in EventType
}

ENGAGEMENT_EVENT_TYPES = frozenset({
    EventType.LIKE, EventType.UNLIKE, EventType.FOLLOW, EventType.UNFOLLOW,
})


@dataclass(frozen=True)
class ClassifiedChange:
    event_type: EventType
    field_name: str | None
    value: dict[str, Any] = field(default_factory=dict)

    @property
    def priority(self) -> Priority:
        return determine_priority(self.event_type)

    @property
    def is_unknown(self) -> bool:
        return self.event_type == EventType.UNKNOWN


def classify_field(field_name: str | None) -> EventType:
    if not field_name:
        return EventType.UNKNOWN
    return FIELD_EVENT_TYPES.get(field_name, EventType.UNKNOWN)


def classify_change(change: dict[str, Any]) -> ClassifiedChange:
    """Classify one ``entry.changes[]`` item.

    Unknown fields are kept with their raw value so they can be inspected
    later; a non-dict ``value`` is wrapped as ``{"raw": value}``.
    """
    field_name = change.get("field")
    value = change.get("value")
    if not isinstance(value, dict):
        value = {} if value is None else {"raw": value}
    return ClassifiedChange(
        event_type=classify_field(field_name),
        field_name=field_name,
        value=value,
    )


def classify_message(messaging: dict[str, Any]) -> EventType:
    """``entry.messaging[]`` items are direct messages unless they reply to a story."""
    message = messaging.get("message") or {}
    reply_to = message.get("reply_to") or {}
    if reply_to.get("story"):
        return EventType.STORY_REPLY
    return EventType.DIRECT_MESSAGE


def determine_priority(event_type: EventType) -> Priority:
    return EVENT_PRIORITIES[EventType(event_type)]


def requires_immediate_attention(event_type: EventType, priority: Priority) -> bool:
    return event_type in (EventType.ERROR, EventType.DIRECT_MESSAGE, EventType.MENTION) or (
        priority in (Priority.HIGH, Priority.CRITICAL)
    )


def should_auto_process(event_type: EventType, priority: Priority) -> bool:
    """Error and unknown events, and anything critical, wait for an operator."""
    return event_type not in (EventType.ERROR, EventType.UNKNOWN) and priority != Priority.CRITICAL
