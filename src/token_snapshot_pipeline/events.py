"""Typed pipeline events and a small observer registry.

Components publish lifecycle and alert notifications (collection
finished, buffer flushed, drift detected, ...) through an ``EventBus``.
Subscribers are plain callables; a failing subscriber is logged and never
affects the emitter or the remaining subscribers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


Clock = Callable[[], datetime]


class EventType(str, Enum):
    """Kinds of notification emitted by pipeline components."""

    TOKEN_ADDED = "token_added"
    TOKEN_REMOVED = "token_removed"
    INTERESTING_EVENT = "interesting_event"
    COLLECTION_COMPLETE = "collection_complete"
    COLLECTION_FAILED = "collection_failed"
    BUFFER_FLUSHED = "buffer_flushed"
    QUALITY_WARNING = "quality_warning"
    QUALITY_CRITICAL = "quality_critical"
    CLASS_IMBALANCE = "class_imbalance"
    DRIFT_HIGH = "drift_high"
    DRIFT_CRITICAL = "drift_critical"
    RETRAINING_RECOMMENDED = "retraining_recommended"


@dataclass(frozen=True)
class PipelineEvent:
    """A single notification.

    Attributes:
        type: What happened.
        payload: Event-specific details (counts, report objects, token ids).
        emitted_at: When the event was created.
    """

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=now_utc)


EventCallback = Callable[[PipelineEvent], None]


class EventBus:
    """Synchronous fan-out of ``PipelineEvent``s to registered callbacks."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[EventCallback, frozenset[EventType] | None]] = []

    def subscribe(
        self,
        callback: EventCallback,
        event_types: set[EventType] | None = None,
    ) -> Callable[[], None]:
        """Register a callback.

        Args:
            callback: Called with every matching event.
            event_types: Restrict delivery to these types (all types if None).

        Returns:
            A function that removes the subscription.
        """
        entry = (callback, frozenset(event_types) if event_types else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event_type: EventType, /, **payload: Any) -> PipelineEvent:
        """Build and deliver an event to all matching subscribers."""
        event = PipelineEvent(type=event_type, payload=payload)
        self.publish(event)
        return event

    def publish(self, event: PipelineEvent) -> None:
        for callback, types in list(self._subscribers):
            if types is not None and event.type not in types:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning("Event callback failed for %s: %s", event.type.value, e)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
