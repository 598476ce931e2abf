"""
In-memory persistence adapter with transaction and savepoint semantics.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Any, Dict, Mapping, Sequence, Tuple, Type

from ..core.entity import Entity
from ..utils import get_logger
from .base import AdapterConnectionError, AdapterTransactionError, ConnectionConfig

Row = Dict[str, Any]
TableState = Dict[str, Dict[Any, Row]]


class InMemoryDatabase:
    """
    Shared row storage that several :class:`InMemoryAdapter` connections can open.

    Write transactions are serialized through ``write_lock``.
    """

    def __init__(self) -> None:
        self.tables: TableState = {}
        self.sequences: Dict[str, int] = {}
        self.write_lock = threading.Lock()

    def table(self, name: str) -> Dict[Any, Row]:
        return self.tables.setdefault(name, {})

    def next_id(self, table: str) -> int:
        value = self.sequences.get(table, 0) + 1
        self.sequences[table] = value
        return value

    def copy_state(self) -> Tuple[TableState, Dict[str, int]]:
        tables = {name: {key: dict(row) for key, row in rows.items()} for name, rows in self.tables.items()}
        return tables, dict(self.sequences)

    def restore(self, state: Tuple[TableState, Dict[str, int]]) -> None:
        tables, sequences = state
        self.tables = {name: {key: dict(row) for key, row in rows.items()} for name, rows in tables.items()}
        self.sequences = dict(sequences)

    def rows(self, table: str) -> list[Row]:
        return [dict(row) for row in self.tables.get(table, {}).values()]


class InMemoryAdapter:
    """
    Adapter over an :class:`InMemoryDatabase`.

    Every storage call is appended to :attr:`calls` so tests can assert exactly
    which writes a commit issued.
    """

    def __init__(self, database: InMemoryDatabase | None = None) -> None:
        self.database = database or InMemoryDatabase()
        self.calls: list[Tuple[Any, ...]] = []
        self._connected = False
        self._timeout = 5.0
        self._snapshot: Tuple[TableState, Dict[str, int]] | None = None
        self._savepoints: list[Tuple[str, Tuple[TableState, Dict[str, int]]]] = []
        self.logger = get_logger("adapters.memory")

    # ------------------------------------------------------------------ #
    def connect(self, config: ConnectionConfig | None = None) -> InMemoryDatabase:
        if config is not None and config.timeout is not None:
            self._timeout = config.timeout
        self._connected = True
        return self.database

    def close(self) -> None:
        if self.in_transaction:
            self.rollback()
        self._connected = False

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    def call_counts(self) -> Counter:
        return Counter(call[0] for call in self.calls)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise AdapterConnectionError("InMemoryAdapter is not connected.")

    def _ensure_transaction(self, operation: str) -> None:
        self._ensure_connected()
        if not self.in_transaction:
            raise AdapterTransactionError(f"{operation} requires an open transaction.")

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        self._ensure_connected()
        if self.in_transaction:
            raise AdapterTransactionError("A transaction is already open on this connection.")
        if not self.database.write_lock.acquire(timeout=self._timeout):
            raise AdapterTransactionError("Timed out waiting for the database write lock.")
        self._snapshot = self.database.copy_state()
        self._savepoints.clear()
        self.calls.append(("begin",))

    def commit(self) -> None:
        self._ensure_transaction("commit")
        self._end_transaction()
        self.calls.append(("commit",))

    def rollback(self) -> None:
        if not self.in_transaction:
            return
        assert self._snapshot is not None
        self.database.restore(self._snapshot)
        self._end_transaction()
        self.calls.append(("rollback",))

    def savepoint(self, name: str) -> None:
        self._ensure_transaction("savepoint")
        self._savepoints.append((name, self.database.copy_state()))
        self.calls.append(("savepoint", name))

    def rollback_to(self, name: str) -> None:
        self._ensure_transaction("rollback_to")
        for index in range(len(self._savepoints) - 1, -1, -1):
            if self._savepoints[index][0] == name:
                self.database.restore(self._savepoints[index][1])
                del self._savepoints[index:]
                self.calls.append(("rollback_to", name))
                return
        raise AdapterTransactionError(f"Unknown savepoint '{name}'.")

    def _end_transaction(self) -> None:
        self._snapshot = None
        self._savepoints.clear()
        self.database.write_lock.release()

    # ------------------------------------------------------------------ #
    # Entity persistence
    # ------------------------------------------------------------------ #
    def insert(self, entity: Entity) -> Any:
        self._ensure_transaction("insert")
        table_name = entity.table_name()
        row = entity.to_row()
        id_column, version_column = _columns(type(entity))
        entity_id = row.get(id_column)
        if entity_id is None:
            entity_id = self.database.next_id(table_name)
        row[id_column] = entity_id
        row[version_column] = 1
        self.database.table(table_name)[entity_id] = row
        self.calls.append(("insert", table_name, entity_id))
        return entity_id

    def update(self, entity: Entity, expected_version: int, fields: Sequence[str] | None = None) -> bool:
        self._ensure_transaction("update")
        entity_type = type(entity)
        table_name = entity.table_name()
        id_column, version_column = _columns(entity_type)
        self.calls.append(("update", table_name, entity.id))
        stored = self.database.table(table_name).get(entity.id)
        if stored is None or stored.get(version_column) != expected_version:
            return False
        meta = entity_type._meta
        selected = [meta.get_field(name) for name in fields] if fields is not None else meta.tracked_fields()
        row = entity.to_row()
        for field in selected:
            stored[field.column_name()] = row[field.column_name()]
        stored[version_column] = expected_version + 1
        return True

    def delete(self, entity_type: Type[Entity], entity_id: Any) -> None:
        self._ensure_transaction("delete")
        table_name = entity_type.table_name()
        self.database.table(table_name).pop(entity_id, None)
        self.calls.append(("delete", table_name, entity_id))

    def current_version(self, entity_type: Type[Entity], entity_id: Any) -> int | None:
        self._ensure_connected()
        _, version_column = _columns(entity_type)
        stored = self.database.tables.get(entity_type.table_name(), {}).get(entity_id)
        if stored is None:
            return None
        return stored.get(version_column)

    def load(self, entity_type: Type[Entity], entity_id: Any) -> Mapping[str, Any] | None:
        self._ensure_connected()
        stored = self.database.tables.get(entity_type.table_name(), {}).get(entity_id)
        self.calls.append(("load", entity_type.table_name(), entity_id))
        return dict(stored) if stored is not None else None


def _columns(entity_type: Type[Entity]) -> Tuple[str, str]:
    meta = entity_type._meta
    assert meta.id_field is not None and meta.version_field is not None
    return meta.id_field.column_name(), meta.version_field.column_name()
