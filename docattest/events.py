"""
DOCATTEST Event Infrastructure

Structured notifications are the only way indexers and audit consumers learn
about state changes. Every committed mutation produces its notifications in
serialization order: they are appended to the EventStore and then delivered
to EventBus subscribers.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Domain Events            Event Store           Event Bus                │
    │  ├─ DocumentCreated       ├─ Append-only        ├─ Typed subscriptions  │
    │  ├─ FieldAssignmentAdded  ├─ Global sequence    ├─ Priorities           │
    │  ├─ VerifierSetChanged    ├─ Per-document       ├─ Filters              │
    │  ├─ FieldVerified         │  streams            └─ Error isolation      │
    │  └─ DocumentVerified      └─ Snapshot export                            │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Usage
─────

    bus = EventBus()

    @bus.subscribe(DocumentVerified)
    def on_verified(event: DocumentVerified):
        print(f"Document {event.document_id} verified by {event.verifier}")

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type

from docattest.canonical import canonical_digest

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all notifications.

    Events are immutable facts about a committed state change. Each event has
    a unique ID and timestamp in addition to its payload fields.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def payload(self) -> Dict[str, Any]:
        """Payload fields only (no envelope metadata)."""
        envelope = {"event_id", "event_timestamp", "correlation_id"}
        return {k: v for k, v in asdict(self).items() if k not in envelope}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        data = dict(data)
        event_type = data.pop("event_type", cls.__name__)
        event_cls = EVENT_TYPES.get(event_type, cls)
        return event_cls(**data)

    def digest(self) -> str:
        """Deterministic digest of event content using JCS canonicalization."""
        return canonical_digest(self.to_dict())


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class DocumentCreated(Event):
    """Emitted when a document is created."""
    owner: str = ""
    name: str = ""
    uri: str = ""
    document_hash: str = ""
    external_id: int = 0
    min_field_verify: int = 0
    document_id: int = 0


@dataclass
class FieldAssignmentAdded(Event):
    """Emitted when field verifiers are installed on a document."""
    document_id: int = 0
    field_hashes: List[str] = field(default_factory=list)
    verifier_identities: List[str] = field(default_factory=list)


@dataclass
class VerifierSetChanged(Event):
    """Emitted when the administrator adds or removes verifiers."""
    identities: List[str] = field(default_factory=list)
    removed: bool = False


@dataclass
class FieldVerified(Event):
    """Emitted when a field attestation latch flips."""
    document_id: int = 0
    field_hash: str = ""
    attestor: str = ""


@dataclass
class DocumentVerified(Event):
    """Emitted when a document reaches (or is affirmed at) VERIFIED."""
    document_id: int = 0
    verifier: str = ""


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.__name__: cls
    for cls in (DocumentCreated, FieldAssignmentAdded, VerifierSetChanged, FieldVerified, DocumentVerified)
}


# ════════════════════════════════════════════════════════════════════════════
# EVENT HANDLER
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    In-memory synchronous event bus.

    Handlers run in priority order on the publishing thread. A failing
    handler never propagates into the publisher: the failure is counted,
    logged and passed to ``on_error`` if one is configured.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        Args:
            event_types: Event types to subscribe to (none = all events)
            priority: Handler priority (higher = earlier)
            filter_func: Optional filter function
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        with self._lock:
            self._published_count += 1
            handlers_to_call = [
                r for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
                and (r.filter_func is None or r.filter_func(event))
            ]

        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = EventHandlerError(event, handler, e)
            logger.warning("event handler failed: %s", error)
            if self._on_error:
                self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


VERIFIER_STREAM = "verifiers"


def document_stream(document_id: int) -> str:
    return f"document-{document_id}"


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "stream_id": self.stream_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventRecord":
        return cls(
            sequence_number=data["sequence_number"],
            event=Event.from_dict(data["event"]),
            stream_id=data["stream_id"],
            version=data["version"],
            recorded_at=data.get("recorded_at", ""),
        )


class EventStore:
    """
    Append-only notification log.

    Events are organized into streams (one per document, one for the
    verifier directory) and carry a global sequence number that reflects the
    serialization order of the mutations that produced them.
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._sequence_number = 0
        self._lock = threading.RLock()

    def append(self, stream_id: str, events: List[Event]) -> List[EventRecord]:
        with self._lock:
            stream = self._streams.setdefault(stream_id, [])
            records = []
            for event in events:
                self._sequence_number += 1
                record = EventRecord(
                    sequence_number=self._sequence_number,
                    event=event,
                    stream_id=stream_id,
                    version=len(stream) + 1,
                )
                self._events.append(record)
                stream.append(record)
                records.append(record)
            return records

    def read_stream(self, stream_id: str, from_version: int = 0) -> List[Event]:
        with self._lock:
            return [r.event for r in self._streams.get(stream_id, [])[from_version:]]

    def read_stream_records(
        self,
        stream_id: str,
        from_version: int = 0,
        max_count: Optional[int] = None,
    ) -> List[EventRecord]:
        with self._lock:
            records = self._streams.get(stream_id, [])
            end = None if max_count is None else from_version + max_count
            return records[from_version:end]

    def read_all(self, from_position: int = 0, max_count: int = 1000) -> List[EventRecord]:
        with self._lock:
            return self._events[from_position:from_position + max_count]

    def restore(self, records: List[EventRecord]) -> None:
        """Replace the log from a snapshot."""
        with self._lock:
            self._events = sorted(records, key=lambda r: r.sequence_number)
            self._streams = {}
            for record in self._events:
                self._streams.setdefault(record.stream_id, []).append(record)
            self._sequence_number = self._events[-1].sequence_number if self._events else 0

    @property
    def total_events(self) -> int:
        with self._lock:
            return len(self._events)
