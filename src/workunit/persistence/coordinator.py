"""
Transaction coordinator applying a unit of work atomically, with nested scopes.
"""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, Generator, List, Optional, Tuple, Type, TypeVar

from ..adapters.base import PersistenceAdapter
from ..core.entity import Entity
from ..errors import ConflictError, PersistenceError, ScopeError
from ..events import DomainEvent, EventKind, EventRecorder, EventSink, NullEventSink
from ..utils import get_logger, time_call
from .change_tracker import ChangeState, ChangeTracker
from .conflicts import ConflictDetector
from .identity_map import EntityRegistry

if TYPE_CHECKING:
    from .repository import Repository

TEntity = TypeVar("TEntity", bound=Entity)

_Restore = Tuple[Entity, Any, Any]
_Staged = Tuple[int, DomainEvent]


class ScopeState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionCoordinator:
    """
    Owns one logical business transaction.

    The root coordinator is the only component that writes through the
    persistence adapter. Children created by :meth:`begin_nested` share the
    root's adapter, identity map and ordering counters; committing a child
    hands its change set to the parent, rolling it back returns storage to the
    child's savepoint and forgets the child's changes.

    Not thread-safe: use one coordinator per task.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        *,
        event_sink: Optional[EventSink] = None,
        detect_changes: bool = False,
        slow_commit_ms: float = 500,
        parent: Optional["TransactionCoordinator"] = None,
        savepoint: Optional[str] = None,
    ) -> None:
        self.adapter = adapter
        self.parent = parent
        self.savepoint_name = savepoint
        self.detect_changes = detect_changes
        self.slow_commit_ms = slow_commit_ms
        self.event_sink: EventSink = event_sink or NullEventSink()
        self.detector = ConflictDetector()
        self.recorder = EventRecorder()
        if parent is None:
            self.registry = EntityRegistry()
            self.tracker = ChangeTracker()
            self._savepoints = itertools.count(1)
        else:
            self.registry = parent.registry
            self.tracker = ChangeTracker(parent=parent.tracker)
            self._savepoints = parent._savepoints
        self.state = ScopeState.IDLE
        self._child: Optional[TransactionCoordinator] = None
        self._storage_open = False
        self.logger = get_logger("persistence.coordinator")

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    @property
    def is_active(self) -> bool:
        return self.state is ScopeState.ACTIVE

    @property
    def depth(self) -> int:
        return 0 if self.parent is None else self.parent.depth + 1

    @property
    def root(self) -> "TransactionCoordinator":
        return self if self.parent is None else self.parent.root

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "TransactionCoordinator":
        if self.parent is None and not self.is_active:
            self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.is_active:
            return
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @contextmanager
    def nested(self) -> Generator["TransactionCoordinator", None, None]:
        """
        Run a block inside a savepoint-backed child scope.
        """

        child = self.begin_nested()
        try:
            yield child
        except Exception:
            if child.is_active:
                child.rollback()
            raise
        else:
            if child.is_active:
                child.commit()

    # ------------------------------------------------------------------ #
    # Scope lifecycle
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        if self.parent is not None:
            raise ScopeError("Nested scopes are started with begin_nested() on their parent.")
        if self.is_active:
            raise ScopeError("Scope is already active.")
        self._reset()
        self.state = ScopeState.ACTIVE
        self.logger.debug("Scope begun")

    def begin_nested(self) -> "TransactionCoordinator":
        self._require_open("begin a nested scope")
        self._ensure_storage_transaction()
        name = f"sp_{next(self._savepoints)}"
        self.adapter.savepoint(name)
        child = TransactionCoordinator(
            self.adapter,
            event_sink=self.event_sink,
            detect_changes=self.detect_changes,
            slow_commit_ms=self.slow_commit_ms,
            parent=self,
            savepoint=name,
        )
        child.state = ScopeState.ACTIVE
        self._child = child
        self.logger.debug("Nested scope %s begun at depth %s", name, child.depth)
        return child

    def commit(self) -> None:
        if not self.is_active:
            raise ScopeError(f"Cannot commit a scope that is {self.state.value}.")
        if self._child is not None:
            raise ScopeError("Cannot commit while a nested scope is still open.")
        if self.parent is not None:
            self._commit_nested()
            return
        self._commit_root()

    def rollback(self) -> None:
        if self.state is ScopeState.ROLLED_BACK:
            self.logger.debug("Rollback on an already rolled-back scope ignored")
            return
        if not self.is_active:
            raise ScopeError(f"Cannot roll back a scope that is {self.state.value}.")
        if self._child is not None:
            self._child._discard()
            self._child = None
        if self.parent is not None:
            self._rollback_nested()
            return
        try:
            if self._storage_open:
                self.adapter.rollback()
        finally:
            self._storage_open = False
            self._reset()
            self.state = ScopeState.ROLLED_BACK
            self.logger.info("Scope rolled back")

    def close(self) -> None:
        """
        End the scope, rolling back anything still pending, and drop the identity map.
        """

        if self.is_active:
            self.rollback()
        if self.parent is None:
            self.registry.clear()

    # ------------------------------------------------------------------ #
    # Registration (used by repositories)
    # ------------------------------------------------------------------ #
    def register_new(self, entity: Entity) -> None:
        self._require_open("register entities")
        self.tracker.register_new(entity)

    def register_dirty(self, entity: Entity) -> None:
        self._require_open("register entities")
        self._track_existing(entity)
        self.tracker.register_dirty(entity)

    def register_removed(self, entity: Entity) -> None:
        self._require_open("register entities")
        self._track_existing(entity)
        self.tracker.register_removed(entity)

    def register_clean(self, entity: Entity) -> None:
        self._require_open("register entities")
        self.tracker.register_clean(entity)

    def load(self, entity_type: Type[TEntity], entity_id: Any) -> TEntity | None:
        """
        Return the scope's canonical instance, loading it from storage on first access.
        """

        if not self.is_active:
            raise ScopeError(f"Cannot load entities in a scope that is {self.state.value}.")
        cached = self.registry.get_or_track(entity_type, entity_id)
        if cached is not None:
            if self.tracker.state_of(cached) is ChangeState.REMOVED:
                return None
            return cached  # type: ignore[return-value]
        row = self.adapter.load(entity_type, entity_id)
        if row is None:
            return None
        entity = entity_type.from_row(row)
        self.registry.track(entity, committed_state=entity.field_values())
        return entity

    def repository(self, entity_type: Type[TEntity]) -> "Repository[TEntity]":
        from .repository import Repository

        return Repository(self, entity_type)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _track_existing(self, entity: Entity) -> None:
        # Pending inserts stay out of the identity map even if the caller assigned an id.
        if entity.id is not None and self.tracker.state_of(entity) is not ChangeState.NEW:
            self.registry.track(entity)

    def _require_open(self, action: str) -> None:
        if not self.is_active:
            raise ScopeError(f"Cannot {action} in a scope that is {self.state.value}.")
        if self._child is not None:
            raise ScopeError(f"Cannot {action} while a nested scope is open; use the nested coordinator.")

    def _ensure_storage_transaction(self) -> None:
        root = self.root
        if not root._storage_open:
            root.adapter.begin()
            root._storage_open = True

    def _reset(self) -> None:
        self.tracker.clear()
        self.recorder.clear()
        if self.parent is None:
            self.registry.clear()

    def _discard(self) -> None:
        if self._child is not None:
            self._child._discard()
            self._child = None
        self.tracker.clear()
        self.state = ScopeState.ROLLED_BACK

    def _commit_nested(self) -> None:
        assert self.parent is not None
        merged = len(self.tracker)
        self.tracker.merge_into(self.parent.tracker)
        self.state = ScopeState.COMMITTED
        self.parent._child = None
        self.logger.debug("Nested scope %s merged %s change(s) into parent", self.savepoint_name, merged)

    def _rollback_nested(self) -> None:
        assert self.parent is not None and self.savepoint_name is not None
        try:
            self.adapter.rollback_to(self.savepoint_name)
        finally:
            self.tracker.clear()
            self.state = ScopeState.ROLLED_BACK
            self.parent._child = None
            self.logger.debug("Nested scope %s rolled back", self.savepoint_name)

    def _commit_root(self) -> None:
        if self.detect_changes:
            collected = self.tracker.collect_dirty(self.registry.values(), self.registry.snapshot)
            if collected:
                self.logger.debug("Detected %s modified entities", len(collected))
        changes = self.tracker.changeset()
        restore: List[_Restore] = []
        staged: List[_Staged] = []
        try:
            with time_call("coordinator.commit", self.logger, threshold_ms=self.slow_commit_ms):
                self._ensure_storage_transaction()
                self._apply_new(staged, restore)
                self._apply_dirty(staged, restore)
                self._apply_removed(staged)
                for _, event in sorted(staged, key=lambda item: item[0]):
                    self.recorder.record(event)
                self.recorder.flush(self.event_sink)
                self.adapter.commit()
                self._storage_open = False
        except Exception as exc:
            self._abort(restore, exc)
            if isinstance(exc, (ConflictError, PersistenceError)):
                raise
            raise PersistenceError(f"Commit failed: {exc}") from exc

        events = len(self.recorder)
        self.tracker.clear()
        self.recorder.clear()
        self.state = ScopeState.COMMITTED
        self.logger.info(
            "Committed %s new, %s dirty, %s removed entities with %s event(s)",
            len(changes.new),
            len(changes.dirty),
            len(changes.removed),
            events,
        )

    def _apply_new(self, staged: List[_Staged], restore: List[_Restore]) -> None:
        for entry in self.tracker.entries(ChangeState.NEW):
            entity = entry.entity
            restore.append((entity, entity.id, entity.version))
            new_id = self.adapter.insert(entity)
            self.tracker.register_clean(entity)
            entity.id = new_id
            entity.version = 1
            state = entity.field_values()
            self.registry.track(entity, committed_state=state)
            staged.append(
                (entry.ordinal, DomainEvent(entity.entity_name(), new_id, EventKind.CREATED, state))
            )

    def _apply_dirty(self, staged: List[_Staged], restore: List[_Restore]) -> None:
        for entry in self.tracker.entries(ChangeState.DIRTY):
            entity = entry.entity
            entity_type = type(entity)
            diff = self.detector.compute_diff(self.registry.snapshot(entity), entity.field_values())
            if not diff:
                self.tracker.register_clean(entity)
                continue
            persisted = self.adapter.current_version(entity_type, entity.id)
            self.detector.check_version(
                entity.version,
                persisted,
                entity_type=entity.entity_name(),
                entity_id=entity.id,
            )
            restore.append((entity, entity.id, entity.version))
            if not self.adapter.update(entity, entity.version, fields=diff.fields()):
                raise ConflictError(
                    entity.entity_name(),
                    entity.id,
                    expected=entity.version,
                    actual=self.adapter.current_version(entity_type, entity.id),
                )
            entity.version = entity.version + 1
            self.registry.track(entity)
            self.registry.refresh(entity)
            self.tracker.register_clean(entity)
            staged.append(
                (entry.ordinal, DomainEvent(entity.entity_name(), entity.id, EventKind.UPDATED, diff.as_payload()))
            )

    def _apply_removed(self, staged: List[_Staged]) -> None:
        for entry in self.tracker.entries(ChangeState.REMOVED):
            entity = entry.entity
            if entity.id is None:
                self.tracker.register_clean(entity)
                continue
            last_state = self.registry.snapshot(entity) or entity.field_values()
            self.adapter.delete(type(entity), entity.id)
            self.registry.evict(type(entity), entity.id)
            self.tracker.register_clean(entity)
            staged.append(
                (entry.ordinal, DomainEvent(entity.entity_name(), entity.id, EventKind.DELETED, last_state))
            )

    def _abort(self, restore: List[_Restore], cause: Exception) -> None:
        try:
            if self._storage_open:
                self.adapter.rollback()
        except Exception:
            self.logger.exception("Rolling back after a failed commit also failed")
        finally:
            self._storage_open = False
            for entity, entity_id, version in reversed(restore):
                entity.id = entity_id
                entity.version = version
            self._reset()
            self.state = ScopeState.ROLLED_BACK
            self.logger.warning("Commit aborted and rolled back: %s", cause)
