"""
Domain event capture and delivery.
"""

from .dispatcher import DispatchingEventSink
from .outbox import SQLiteOutboxSink
from .recorder import DomainEvent, EventKind, EventRecorder
from .sinks import EventSink, InMemoryEventSink, NullEventSink

__all__ = [
    "DispatchingEventSink",
    "DomainEvent",
    "EventKind",
    "EventRecorder",
    "EventSink",
    "InMemoryEventSink",
    "NullEventSink",
    "SQLiteOutboxSink",
]
