"""
Dialect strategy interface describing the SQL the SQL-backed adapters emit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DialectCapabilities:
    """
    Feature flags describing backend capabilities.
    """

    supports_savepoints: bool = True
    supports_returning: bool = False


class Dialect(Protocol):
    """
    Strategy interface consumed by SQL adapters and the schema builder.
    """

    @property
    def name(self) -> str: ...

    @property
    def capabilities(self) -> DialectCapabilities: ...

    def quote_identifier(self, identifier: str) -> str: ...

    def format_table(self, table_name: str) -> str: ...

    def parameter_placeholder(self, position: int | None = None) -> str: ...

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str: ...

    def begin_sql(self, mode: str = ...) -> str: ...

    def savepoint_sql(self, name: str) -> str: ...

    def rollback_to_savepoint_sql(self, name: str) -> str: ...

    def release_savepoint_sql(self, name: str) -> str: ...
