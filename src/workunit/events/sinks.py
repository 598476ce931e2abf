"""
Event sink protocol and simple in-process sinks.
"""

from __future__ import annotations

from threading import RLock
from typing import Protocol, Sequence

from .recorder import DomainEvent, EventKind


class EventSink(Protocol):
    def append(self, events: Sequence[DomainEvent]) -> None:
        """
        Accept one commit's ordered batch. Raising rejects the batch and fails the commit.
        """


class NullEventSink:
    """Discards every batch."""

    def append(self, events: Sequence[DomainEvent]) -> None:
        return None


class InMemoryEventSink:
    """
    Collects delivered events in order; mostly useful in tests and examples.
    """

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []
        self._batches = 0
        self._lock = RLock()

    def append(self, events: Sequence[DomainEvent]) -> None:
        with self._lock:
            self._events.extend(events)
            self._batches += 1

    @property
    def events(self) -> list[DomainEvent]:
        with self._lock:
            return list(self._events)

    @property
    def batch_count(self) -> int:
        with self._lock:
            return self._batches

    def of_kind(self, kind: EventKind) -> list[DomainEvent]:
        with self._lock:
            return [event for event in self._events if event.kind is kind]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._batches = 0
