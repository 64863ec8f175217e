"""
Domain event dispatcher.

The core never delivers notifications itself. It publishes domain events
here and the notification collaborator subscribes to them. Subscriber
failures are logged and never roll back the write that produced the event.
"""

from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging
import threading
import uuid

from pydantic import BaseModel, Field

from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    REPORT_CREATED = "ReportCreated"
    STATUS_CHANGED = "StatusChanged"
    VOTE_CAST = "VoteCast"
    ESCALATION_TRIGGERED = "EscalationTriggered"
    DUPLICATE_LINKED = "DuplicateLinked"


class DomainEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    type: EventType
    report_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)


Subscriber = Callable[[DomainEvent], None]


class EventDispatcher:
    """In-process publish/subscribe for domain events."""

    def __init__(self):
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, handler: Subscriber, event_type: Optional[EventType] = None) -> None:
        """Register a handler for one event type, or for every event when event_type is None."""
        with self._lock:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, handler: Subscriber, event_type: Optional[EventType] = None) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event_type: EventType, report_id: str, **payload) -> DomainEvent:
        event = DomainEvent(type=event_type, report_id=report_id, payload=payload)
        with self._lock:
            handlers = list(self._subscribers.get(event_type, [])) + list(self._subscribers.get(None, []))
        logger.info(f"Event published: {event.type.value} report={report_id} -> {event.event_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event subscriber failed for {event.type.value}: {e}", exc_info=True)
        return event


_dispatcher = None


def get_event_dispatcher() -> EventDispatcher:
    """Get or create EventDispatcher singleton."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher()
    return _dispatcher
