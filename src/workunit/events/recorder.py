"""
Domain events captured per state transition and flushed on commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Tuple

from ..errors import EventSinkError
from ..utils import get_logger

if TYPE_CHECKING:
    from .sinks import EventSink


class EventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """
    Immutable record of one entity state transition.

    ``payload`` carries the initial field set for ``CREATED``, a
    ``{field: {"old", "new"}}`` diff for ``UPDATED`` and the last committed
    field set for ``DELETED``.
    """

    entity_type: str
    entity_id: Any
    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    sequence_number: int = 0
    occurred_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "sequence_number": self.sequence_number,
            "occurred_at": self.occurred_at.isoformat(),
        }


class EventRecorder:
    """
    Scope-local, strictly ordered event log.
    """

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []
        self.logger = get_logger("events.recorder")

    @property
    def events(self) -> Tuple[DomainEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: DomainEvent) -> DomainEvent:
        stamped = replace(event, sequence_number=len(self._events) + 1)
        self._events.append(stamped)
        return stamped

    def flush(self, sink: "EventSink") -> Tuple[DomainEvent, ...]:
        """
        Hand the whole ordered batch to ``sink`` in a single call.
        """
        batch = tuple(self._events)
        if not batch:
            return batch
        try:
            sink.append(batch)
        except EventSinkError:
            raise
        except Exception as exc:
            raise EventSinkError(f"Event sink rejected a batch of {len(batch)} event(s).") from exc
        self.logger.debug("Flushed %s domain event(s)", len(batch), extra={"events": len(batch)})
        return batch

    def clear(self) -> None:
        self._events.clear()
