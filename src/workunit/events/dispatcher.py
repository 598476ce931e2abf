"""
Event sink dispatching domain events to registered handlers.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, List, Optional, Sequence, Type

from ..core.entity import Entity
from ..utils import get_logger
from .recorder import DomainEvent, EventKind

EventHandler = Callable[[DomainEvent], None]


class DispatchingEventSink:
    """
    Maintains global and per-entity-type handlers keyed by event kind.

    Handlers run synchronously inside commit; an exception from any handler
    fails the commit and rolls the data back.
    """

    def __init__(self) -> None:
        self._global_handlers: Dict[EventKind, List[EventHandler]] = defaultdict(list)
        self._entity_handlers: Dict[str, Dict[EventKind, List[EventHandler]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self.logger = get_logger("events.dispatcher")

    def register(
        self,
        kind: EventKind | str,
        handler: EventHandler,
        *,
        entity: Optional[Type[Entity]] = None,
    ) -> None:
        kind = EventKind(kind)
        if entity is not None:
            self._entity_handlers[entity.entity_name()][kind].append(handler)
        else:
            self._global_handlers[kind].append(handler)

    def on(self, kind: EventKind | str, *, entity: Optional[Type[Entity]] = None):
        """
        Decorator form of :meth:`register`.
        """

        def decorator(handler: EventHandler) -> EventHandler:
            self.register(kind, handler, entity=entity)
            return handler

        return decorator

    def append(self, events: Sequence[DomainEvent]) -> None:
        for event in events:
            handlers = list(self._global_handlers.get(event.kind, []))
            handlers.extend(self._entity_handlers.get(event.entity_type, {}).get(event.kind, []))
            for handler in handlers:
                handler(event)
            self.logger.debug(
                "Dispatched %s event #%s to %s handler(s)",
                event.kind.value,
                event.sequence_number,
                len(handlers),
            )

    def clear(self) -> None:
        self._global_handlers.clear()
        self._entity_handlers.clear()
