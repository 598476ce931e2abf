"""
Change tracking: classifies entities touched in a scope as new, dirty or removed.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, Iterator, Mapping, Optional, Tuple

from ..core.entity import Entity
from ..errors import RegistrationError


class ChangeState(str, Enum):
    NEW = "new"
    DIRTY = "dirty"
    REMOVED = "removed"
    CLEAN = "clean"


@dataclass(frozen=True)
class TemporaryKey:
    """Scope-local key standing in for the id of a not-yet-inserted entity."""

    sequence: int


@dataclass
class TrackedEntry:
    entity: Entity
    state: ChangeState
    ordinal: int


@dataclass(frozen=True)
class ChangeSet:
    new: Tuple[Entity, ...] = ()
    dirty: Tuple[Entity, ...] = ()
    removed: Tuple[Entity, ...] = ()

    def __len__(self) -> int:
        return len(self.new) + len(self.dirty) + len(self.removed)


class KeyAllocator:
    """
    Ordinals and temporary keys shared by every tracker of one scope tree.
    """

    def __init__(self) -> None:
        self._ordinals = itertools.count(1)
        self._sequences = itertools.count(1)
        self._temporary: Dict[Entity, TemporaryKey] = {}

    def next_ordinal(self) -> int:
        return next(self._ordinals)

    def temporary_key(self, entity: Entity, *, allocate: bool = True) -> TemporaryKey | None:
        key = self._temporary.get(entity)
        if key is None and allocate:
            key = TemporaryKey(next(self._sequences))
            self._temporary[entity] = key
        return key

    def forget(self, entity: Entity) -> None:
        self._temporary.pop(entity, None)

    def reset(self) -> None:
        self._temporary.clear()


class ChangeTracker:
    """
    Keeps the New/Dirty/Removed change sets of one scope.

    All entries live in a single key-indexed mapping, so an entity key can only
    ever hold one state. A tracker opened for a nested scope validates against
    its parents and hands its entries over with :meth:`merge_into`.
    """

    def __init__(
        self,
        *,
        parent: Optional["ChangeTracker"] = None,
        keys: Optional[KeyAllocator] = None,
    ) -> None:
        self.parent = parent
        if keys is None:
            keys = parent.keys if parent is not None else KeyAllocator()
        self.keys = keys
        self._entries: Dict[Hashable, TrackedEntry] = {}
        # id(entity) -> key of its entry in _entries
        self._keys_by_instance: Dict[int, Hashable] = {}

    # Key handling ------------------------------------------------------
    def key_of(self, entity: Entity) -> Hashable:
        if entity.id is not None:
            return (type(entity), entity.id)
        return self.keys.temporary_key(entity)

    def _local_entry(self, entity: Entity) -> TrackedEntry | None:
        key = self._keys_by_instance.get(id(entity))
        if key is not None:
            entry = self._entries.get(key)
            if entry is not None and entry.entity is entity:
                return entry
        if entity.id is not None:
            entry = self._entries.get((type(entity), entity.id))
            if entry is not None:
                return entry
        temporary = self.keys.temporary_key(entity, allocate=False)
        if temporary is not None:
            entry = self._entries.get(temporary)
            if entry is not None and entry.entity is entity:
                return entry
        return None

    def _drop_local(self, entity: Entity) -> None:
        key = self._keys_by_instance.pop(id(entity), None)
        if key is not None:
            self._entries.pop(key, None)
        real_key = self._real_key(entity)
        if real_key is not None:
            entry = self._entries.pop(real_key, None)
            if entry is not None:
                self._keys_by_instance.pop(id(entry.entity), None)

    @staticmethod
    def _real_key(entity: Entity) -> Hashable | None:
        if entity.id is None:
            return None
        return (type(entity), entity.id)

    def _place(self, entity: Entity, state: ChangeState, ordinal: int | None) -> None:
        self._drop_local(entity)
        if ordinal is None:
            ordinal = self.keys.next_ordinal()
        key = self.key_of(entity)
        self._entries[key] = TrackedEntry(entity, state, ordinal)
        self._keys_by_instance[id(entity)] = key

    # Queries -----------------------------------------------------------
    def state_of(self, entity: Entity) -> ChangeState:
        entry = self._local_entry(entity)
        if entry is not None:
            return entry.state
        if self.parent is not None:
            return self.parent.state_of(entity)
        return ChangeState.CLEAN

    def entries(self, state: ChangeState | None = None) -> list[TrackedEntry]:
        selected = [e for e in self._entries.values() if state is None or e.state is state]
        return sorted(selected, key=lambda entry: entry.ordinal)

    @property
    def new(self) -> list[Entity]:
        return [entry.entity for entry in self.entries(ChangeState.NEW)]

    @property
    def dirty(self) -> list[Entity]:
        return [entry.entity for entry in self.entries(ChangeState.DIRTY)]

    @property
    def removed(self) -> list[Entity]:
        return [entry.entity for entry in self.entries(ChangeState.REMOVED)]

    def changeset(self) -> ChangeSet:
        return ChangeSet(new=tuple(self.new), dirty=tuple(self.dirty), removed=tuple(self.removed))

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TrackedEntry]:
        return iter(self.entries())

    def __contains__(self, entity: Entity) -> bool:
        return self._local_entry(entity) is not None

    # Registration ------------------------------------------------------
    def register_new(self, entity: Entity) -> None:
        self._register_new(entity, None)

    def register_dirty(self, entity: Entity) -> None:
        self._register_dirty(entity, None)

    def register_removed(self, entity: Entity) -> None:
        self._register_removed(entity, None)

    def register_clean(self, entity: Entity) -> None:
        self._drop_local(entity)

    def _register_new(self, entity: Entity, ordinal: int | None) -> None:
        if entity.id is not None:
            raise RegistrationError(
                f"{entity.entity_name()}(id={entity.id!r}) already has an id and cannot be registered as new."
            )
        local = self._local_entry(entity)
        if local is not None and local.state is ChangeState.REMOVED:
            # Re-adding something a nested scope had discarded restores the parent's entry.
            self._drop_local(entity)
            return
        state = self.state_of(entity)
        if state is ChangeState.NEW:
            return
        if state in (ChangeState.DIRTY, ChangeState.REMOVED):
            raise RegistrationError(
                f"{entity.entity_name()} is registered as {state.value} and cannot be registered as new."
            )
        self._place(entity, ChangeState.NEW, ordinal)

    def _register_dirty(self, entity: Entity, ordinal: int | None) -> None:
        if entity.id is None:
            raise RegistrationError(
                f"{entity.entity_name()} has no id yet; new entities cannot be registered as dirty."
            )
        state = self.state_of(entity)
        if state is ChangeState.REMOVED:
            raise RegistrationError(
                f"{entity.entity_name()}(id={entity.id!r}) is registered for removal and cannot be marked dirty."
            )
        if state in (ChangeState.NEW, ChangeState.DIRTY):
            return
        self._place(entity, ChangeState.DIRTY, ordinal)

    def _register_removed(self, entity: Entity, ordinal: int | None) -> None:
        state = self.state_of(entity)
        if state is ChangeState.REMOVED:
            return
        local = self._local_entry(entity)
        if local is not None and local.state is ChangeState.NEW:
            # Never inserted, so there is nothing to delete even if an id was assigned meanwhile.
            self._drop_local(entity)
            self.keys.forget(entity)
            return
        if state is ChangeState.NEW:
            # New in a parent scope: record the discard so it only applies if this scope commits.
            self._place(entity, ChangeState.REMOVED, ordinal)
            return
        if entity.id is None:
            return
        self._place(entity, ChangeState.REMOVED, ordinal)

    # Scope handling ----------------------------------------------------
    def merge_into(self, parent: "ChangeTracker") -> None:
        """
        Replay this tracker's transitions onto ``parent`` in ordinal order.
        """
        appliers: Mapping[ChangeState, Callable[[Entity, int | None], None]] = {
            ChangeState.NEW: parent._register_new,
            ChangeState.DIRTY: parent._register_dirty,
            ChangeState.REMOVED: parent._register_removed,
        }
        for entry in self.entries():
            appliers[entry.state](entry.entity, entry.ordinal)
        self._entries.clear()
        self._keys_by_instance.clear()

    def collect_dirty(
        self,
        candidates: Iterable[Entity],
        snapshot_of: Callable[[Entity], Mapping[str, Any] | None],
    ) -> list[Entity]:
        """
        Register as dirty every clean candidate whose fields drifted from its snapshot.
        """
        collected: list[Entity] = []
        for entity in candidates:
            if entity.id is None or self.state_of(entity) is not ChangeState.CLEAN:
                continue
            snapshot = snapshot_of(entity)
            if snapshot is not None and dict(snapshot) != entity.field_values():
                self._register_dirty(entity, None)
                collected.append(entity)
        return collected

    def clear(self) -> None:
        self._entries.clear()
        self._keys_by_instance.clear()
        if self.parent is None:
            self.keys.reset()
