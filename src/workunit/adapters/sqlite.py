"""
SQLite persistence adapter implementation.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Type

from ..core.entity import Entity
from ..dialects.sqlite import SQLiteDialect
from ..schema import SchemaBuilder
from ..utils import get_logger, redact_params, time_call
from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
)


_PRAGMA_NAME = re.compile(r"^[A-Za-z_]+$")
_PRAGMA_VALUE = re.compile(r"^[\w.-]+$")


@dataclass(slots=True)
class SQLiteConnectionState:
    connection: sqlite3.Connection
    config: ConnectionConfig
    begin_mode: str = "immediate"


class SQLiteAdapter:
    """
    Adapter wrapping the Python stdlib sqlite3 module.

    The connection runs with ``isolation_level=None`` so every transaction
    boundary is an explicit statement issued by this adapter.
    """

    def __init__(self, *, slow_query_ms: int = 100) -> None:
        self.dialect = SQLiteDialect()
        self.schema = SchemaBuilder(self.dialect)
        self.slow_query_ms = slow_query_ms
        self._state: SQLiteConnectionState | None = None
        self.logger = get_logger("adapters.sqlite")

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        """
        Open the database. ``config.isolation_level`` picks the BEGIN mode used for
        write transactions and every entry of ``config.options`` is applied as a PRAGMA.
        """
        begin_mode = (config.isolation_level or "immediate").lower()
        try:
            self.dialect.begin_sql(begin_mode)
        except ValueError as exc:
            raise AdapterConfigurationError(str(exc)) from exc
        pragmas = self._pragmas(config.options or {})
        path = self._normalize_path(config.url)
        timeout = config.timeout if config.timeout is not None else 5.0
        try:
            connection = sqlite3.connect(
                path,
                isolation_level=None,
                timeout=timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise AdapterConnectionError(f"Failed to open SQLite database {config.descriptive_label()}.") from exc
        connection.row_factory = sqlite3.Row
        if config.foreign_keys:
            connection.execute("PRAGMA foreign_keys = ON")
        try:
            for pragma in pragmas:
                connection.execute(pragma)
        except sqlite3.Error as exc:
            connection.close()
            raise AdapterConfigurationError(f"Failed to apply SQLite pragmas: {exc}") from exc
        self.logger.info("Connected to SQLite %s (begin=%s)", config.descriptive_label(), begin_mode)
        self._state = SQLiteConnectionState(connection, config, begin_mode)
        return connection

    def close(self) -> None:
        if self._state:
            try:
                self._state.connection.close()
            finally:
                self._state = None

    def _ensure_connection(self) -> sqlite3.Connection:
        if not self._state:
            raise AdapterConnectionError("SQLiteAdapter is not connected.")
        return self._state.connection

    @property
    def in_transaction(self) -> bool:
        return bool(self._state and self._state.connection.in_transaction)

    # ------------------------------------------------------------------ #
    # Execution helpers
    # ------------------------------------------------------------------ #
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        connection = self._ensure_connection()
        params = tuple(params or ())
        try:
            with time_call(
                "sqlite.execute",
                self.logger,
                sql=sql,
                params=redact_params(params),
                threshold_ms=self.slow_query_ms,
            ):
                return connection.execute(sql, params)
        except sqlite3.Error as exc:
            raise AdapterExecutionError(f"SQLite statement failed: {exc}") from exc

    def _transaction_statement(self, sql: str) -> None:
        connection = self._ensure_connection()
        try:
            connection.execute(sql)
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"'{sql}' failed: {exc}") from exc
        self.logger.debug("Transaction statement executed", extra={"sql": sql})

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        self._ensure_connection()
        assert self._state is not None
        self._transaction_statement(self.dialect.begin_sql(self._state.begin_mode))

    def commit(self) -> None:
        self._transaction_statement("COMMIT")

    def rollback(self) -> None:
        if not self.in_transaction:
            return
        self._transaction_statement("ROLLBACK")

    def savepoint(self, name: str) -> None:
        self._transaction_statement(self.dialect.savepoint_sql(name))

    def rollback_to(self, name: str) -> None:
        self._transaction_statement(self.dialect.rollback_to_savepoint_sql(name))
        self._transaction_statement(self.dialect.release_savepoint_sql(name))

    # ------------------------------------------------------------------ #
    # Schema
    # ------------------------------------------------------------------ #
    def create_table(self, entity_type: Type[Entity]) -> None:
        self.execute(self.schema.create_table_sql(entity_type))

    def drop_table(self, entity_type: Type[Entity]) -> None:
        self.execute(self.schema.drop_table_sql(entity_type))

    # ------------------------------------------------------------------ #
    # Entity persistence
    # ------------------------------------------------------------------ #
    def insert(self, entity: Entity) -> Any:
        row = entity.to_row()
        id_column = self._id_column(type(entity))
        if row.get(id_column) is None:
            row.pop(id_column, None)
        row[self._version_column(type(entity))] = 1

        q = self.dialect.quote_identifier
        columns = ", ".join(q(column) for column in row)
        placeholders = ", ".join(self.dialect.parameter_placeholder() for _ in row)
        sql = f"INSERT INTO {self.dialect.format_table(entity.table_name())} ({columns}) VALUES ({placeholders})"
        cursor = self.execute(sql, list(row.values()))
        return row.get(id_column, cursor.lastrowid)

    def update(self, entity: Entity, expected_version: int, fields: Sequence[str] | None = None) -> bool:
        entity_type = type(entity)
        meta = entity_type._meta
        selected = [meta.get_field(name) for name in fields] if fields is not None else meta.tracked_fields()
        row = entity.to_row()
        q = self.dialect.quote_identifier
        placeholder = self.dialect.parameter_placeholder()
        version_column = self._version_column(entity_type)
        id_column = self._id_column(entity_type)

        assignments = [f"{q(field.column_name())} = {placeholder}" for field in selected]
        params: list[Any] = [row[field.column_name()] for field in selected]
        assignments.append(f"{q(version_column)} = {placeholder}")
        params.append(expected_version + 1)
        params.extend([entity.id, expected_version])

        sql = (
            f"UPDATE {self.dialect.format_table(entity.table_name())} SET {', '.join(assignments)} "
            f"WHERE {q(id_column)} = {placeholder} AND {q(version_column)} = {placeholder}"
        )
        cursor = self.execute(sql, params)
        return cursor.rowcount == 1

    def delete(self, entity_type: Type[Entity], entity_id: Any) -> None:
        q = self.dialect.quote_identifier
        sql = (
            f"DELETE FROM {self.dialect.format_table(entity_type.table_name())} "
            f"WHERE {q(self._id_column(entity_type))} = {self.dialect.parameter_placeholder()}"
        )
        self.execute(sql, (entity_id,))

    def current_version(self, entity_type: Type[Entity], entity_id: Any) -> int | None:
        q = self.dialect.quote_identifier
        sql = (
            f"SELECT {q(self._version_column(entity_type))} FROM {self.dialect.format_table(entity_type.table_name())} "
            f"WHERE {q(self._id_column(entity_type))} = {self.dialect.parameter_placeholder()}"
        )
        row = self.execute(sql, (entity_id,)).fetchone()
        if row is None:
            return None
        return int(row[0])

    def load(self, entity_type: Type[Entity], entity_id: Any) -> Mapping[str, Any] | None:
        q = self.dialect.quote_identifier
        columns = ", ".join(q(f.column_name()) for f in entity_type._meta.get_fields())
        sql = (
            f"SELECT {columns} FROM {self.dialect.format_table(entity_type.table_name())} "
            f"WHERE {q(self._id_column(entity_type))} = {self.dialect.parameter_placeholder()} LIMIT 1"
        )
        row = self.execute(sql, (entity_id,)).fetchone()
        if row is None:
            return None
        return dict(row)

    # ------------------------------------------------------------------ #
    @staticmethod
    def _id_column(entity_type: Type[Entity]) -> str:
        id_field = entity_type._meta.id_field
        assert id_field is not None
        return id_field.column_name()

    @staticmethod
    def _version_column(entity_type: Type[Entity]) -> str:
        version_field = entity_type._meta.version_field
        assert version_field is not None
        return version_field.column_name()

    @staticmethod
    def _pragmas(options: Mapping[str, Any]) -> list[str]:
        statements = []
        for name, value in options.items():
            if not _PRAGMA_NAME.match(str(name)) or not _PRAGMA_VALUE.match(str(value)):
                raise AdapterConfigurationError(f"Invalid SQLite pragma option {name}={value!r}")
            statements.append(f"PRAGMA {name} = {value}")
        return statements

    @staticmethod
    def _normalize_path(url: str) -> str:
        if url in ("sqlite:///:memory:", "sqlite://", ":memory:"):
            return ":memory:"
        prefix = "sqlite:///"
        if url.startswith(prefix):
            return url[len(prefix) :]
        return url
