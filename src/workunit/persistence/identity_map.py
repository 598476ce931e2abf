"""
Identity map guaranteeing a single in-memory instance per (type, id).
"""

from __future__ import annotations

from threading import RLock
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from ..core.entity import Entity
from ..errors import IdentityConflict, RegistrationError

EntityKey = Tuple[Type[Entity], Any]


class EntityRegistry:
    """
    Scope-local map of ``(entity type, id) -> instance``.

    Alongside each instance the registry keeps the last committed field
    snapshot, which is what dirty checking diffs against.
    """

    def __init__(self) -> None:
        self._store: Dict[EntityKey, Entity] = {}
        self._snapshots: Dict[EntityKey, Dict[str, Any]] = {}
        self._lock = RLock()

    @staticmethod
    def key_for(entity_type: Type[Entity], entity_id: Any) -> EntityKey:
        return (entity_type, entity_id)

    def get_or_track(self, entity_type: Type[Entity], entity_id: Any) -> Entity | None:
        with self._lock:
            return self._store.get(self.key_for(entity_type, entity_id))

    def track(self, entity: Entity, committed_state: Optional[Mapping[str, Any]] = None) -> Entity:
        """
        Register ``entity`` as the canonical instance for its key.

        ``committed_state`` records what storage currently holds; when omitted
        for an entity that was not loaded through this scope, no snapshot is
        kept and every tracked field counts as changed.
        """
        if entity.id is None:
            raise RegistrationError(
                f"Cannot track {entity.entity_name()} without an id; register it as new instead."
            )
        key = self.key_for(type(entity), entity.id)
        with self._lock:
            existing = self._store.get(key)
            if existing is not None and existing is not entity:
                raise IdentityConflict(entity.entity_name(), entity.id)
            self._store[key] = entity
            if committed_state is not None:
                self._snapshots[key] = dict(committed_state)
        return entity

    def refresh(self, entity: Entity) -> None:
        """
        Mark the entity's current field values as the committed baseline.
        """
        key = self.key_for(type(entity), entity.id)
        with self._lock:
            if self._store.get(key) is entity:
                self._snapshots[key] = entity.field_values()

    def snapshot(self, entity: Entity) -> Dict[str, Any] | None:
        if entity.id is None:
            return None
        key = self.key_for(type(entity), entity.id)
        with self._lock:
            if self._store.get(key) is not entity:
                return None
            snapshot = self._snapshots.get(key)
            return dict(snapshot) if snapshot is not None else None

    def evict(self, entity_type: Type[Entity], entity_id: Any) -> None:
        key = self.key_for(entity_type, entity_id)
        with self._lock:
            self._store.pop(key, None)
            self._snapshots.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._snapshots.clear()

    def values(self) -> list[Entity]:
        with self._lock:
            return list(self._store.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, entity: Entity) -> bool:
        if entity.id is None:
            return False
        with self._lock:
            return self._store.get(self.key_for(type(entity), entity.id)) is entity
