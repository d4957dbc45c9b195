"""
Typed domain events and an in-process event bus.

Surfaces that show collection state subscribe here to learn when to
re-fetch. Delivery is fire-and-forget: no ordering or delivery guarantee
beyond "handlers registered at publish time are called once, in
registration order". A failing handler is logged and does not stop the
others.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type

from core.metrics import increment_counter
from core.models import utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class DomainEvent:
    """Base class for every published event."""
    collection_id: str
    occurred_at: datetime = field(default_factory=utcnow, compare=False)

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class CollectionUpdated(DomainEvent):
    """Something about the collection record changed.

    ``action`` is one of: edited, access_updated, followed, unfollowed,
    member_promoted, member_demoted, member_removed, member_left,
    members_invited, request_denied.
    """
    action: str = "edited"
    user_id: Optional[str] = None


@dataclass(frozen=True)
class CollectionCreated(DomainEvent):
    owner_id: str = ""


@dataclass(frozen=True)
class CollectionJoined(DomainEvent):
    user_id: str = ""


@dataclass(frozen=True)
class CollectionRequestSent(DomainEvent):
    requester_id: str = ""


@dataclass(frozen=True)
class CollectionRequestCancelled(DomainEvent):
    requester_id: str = ""


@dataclass(frozen=True)
class CollectionRequestAccepted(DomainEvent):
    requester_id: str = ""
    approved_by: str = ""


@dataclass(frozen=True)
class CollectionDeleted(DomainEvent):
    owner_id: str = ""
    posts_removed: int = 0


@dataclass(frozen=True)
class PostCreated(DomainEvent):
    post_id: str = ""
    author_id: str = ""


@dataclass(frozen=True)
class PostUpdated(DomainEvent):
    """A post changed; ``action`` is edited, pinned or unpinned."""
    post_id: str = ""
    action: str = "edited"


@dataclass(frozen=True)
class PostDeleted(DomainEvent):
    post_id: str = ""
    deleted_by: str = ""


Handler = Callable[[DomainEvent], Any]


# ============================================================================
# Event Bus
# ============================================================================

class EventBus:
    """
    Synchronous publish/subscribe channel keyed by event type.

    Subscribing to ``DomainEvent`` receives every event.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.RLock()
        self._handlers: Dict[Type[DomainEvent], List[Handler]] = {}

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> Callable[[], None]:
        """
        Register a handler for an event type.

        Returns:
            A callable that removes the subscription
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe():
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> int:
        """
        Deliver an event to every matching handler.

        Returns:
            Number of handlers that ran without raising
        """
        if not self.enabled:
            return 0

        with self._lock:
            handlers = [
                handler
                for event_type, registered in self._handlers.items()
                if isinstance(event, event_type)
                for handler in registered
            ]

        increment_counter("events.published", labels={"event": event.name})

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                increment_counter("events.handler_errors", labels={"event": event.name})
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.name} collection={event.collection_id}: {e}",
                    exc_info=True,
                )

        logger.debug(f"Published {event.name} collection={event.collection_id} to {delivered} handler(s)")
        return delivered

