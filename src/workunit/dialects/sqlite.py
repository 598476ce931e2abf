"""
SQLite dialect implementation.
"""

from __future__ import annotations

from typing import Final

from .base import DialectCapabilities

BEGIN_MODES = ("deferred", "immediate", "exclusive")


class SQLiteDialect:
    """
    SQLite dialect using qmark param style.

    Write transactions start with ``BEGIN IMMEDIATE`` so the version check and
    the update that follows it run under the same reserved lock.
    """

    name: Final[str] = "sqlite"
    capabilities: Final[DialectCapabilities] = DialectCapabilities(
        supports_savepoints=True,
        supports_returning=False,
    )

    def quote_identifier(self, identifier: str) -> str:
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'

    def format_table(self, table_name: str) -> str:
        return self.quote_identifier(table_name)

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "?"

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        null_clause = "" if nullable else " NOT NULL"
        return f"{self.quote_identifier(column)} {column_type}{null_clause}"

    def begin_sql(self, mode: str = "immediate") -> str:
        if mode.lower() not in BEGIN_MODES:
            raise ValueError(f"Unsupported SQLite transaction mode '{mode}'; expected one of {BEGIN_MODES}.")
        return f"BEGIN {mode.upper()}"

    def savepoint_sql(self, name: str) -> str:
        return f"SAVEPOINT {self.quote_identifier(name)}"

    def rollback_to_savepoint_sql(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {self.quote_identifier(name)}"

    def release_savepoint_sql(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {self.quote_identifier(name)}"
