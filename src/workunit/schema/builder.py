"""
Schema builder converting entity metadata into DDL statements.
"""

from __future__ import annotations

from typing import List, Type

from ..core.entity import Entity
from ..core.fields import Field, IdField, VersionField
from ..dialects.base import Dialect
from ..utils import get_logger


class SchemaBuilder:
    """
    Produces dialect-specific DDL for entity tables and the event outbox.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, entity: Type[Entity]) -> str:
        columns = ", ".join(self._render_columns(entity))
        table_name = self.dialect.format_table(entity.table_name())
        return f"CREATE TABLE IF NOT EXISTS {table_name} ({columns})"

    def drop_table_sql(self, entity: Type[Entity]) -> str:
        table_name = self.dialect.format_table(entity.table_name())
        self.logger.warning("DROP TABLE generated for %s; data will be lost.", table_name)
        return f"DROP TABLE IF EXISTS {table_name}"

    def create_outbox_sql(self, table_name: str) -> str:
        q = self.dialect.quote_identifier
        return (
            f"CREATE TABLE IF NOT EXISTS {self.dialect.format_table(table_name)} ("
            f"{q('id')} INTEGER PRIMARY KEY AUTOINCREMENT, "
            f"{q('commit_id')} TEXT NOT NULL, "
            f"{q('sequence_number')} INTEGER NOT NULL, "
            f"{q('entity_type')} TEXT NOT NULL, "
            f"{q('entity_id')} TEXT, "
            f"{q('kind')} TEXT NOT NULL, "
            f"{q('payload')} TEXT NOT NULL, "
            f"{q('occurred_at')} TEXT NOT NULL"
            ")"
        )

    def _render_columns(self, entity: Type[Entity]) -> List[str]:
        pieces: List[str] = []
        for field in entity._meta.get_fields():
            if not field.db_type:
                raise ValueError(f"Field '{field.name}' missing db_type for schema generation.")
            if isinstance(field, IdField):
                pieces.append(f"{self.dialect.quote_identifier(field.column_name())} INTEGER PRIMARY KEY AUTOINCREMENT")
                continue
            nullable = field.nullable and not isinstance(field, VersionField)
            column_def = self.dialect.render_column_definition(
                field.column_name(), field.db_type, nullable=nullable
            )
            extras: List[str] = []
            if field.unique:
                extras.append("UNIQUE")
            default_sql = self._default_clause(field)
            if default_sql:
                extras.append(default_sql)
            if extras:
                column_def = f"{column_def} {' '.join(extras)}"
            pieces.append(column_def)
        return pieces

    def _default_clause(self, field: Field) -> str | None:
        if isinstance(field, VersionField):
            return "DEFAULT 1"
        if field.default is None or callable(field.default):
            return None
        value = field.default
        if isinstance(value, bool):
            return f"DEFAULT {1 if value else 0}"
        if isinstance(value, str):
            escaped = value.replace("'", "''")
            return f"DEFAULT '{escaped}'"
        return f"DEFAULT {value}"
