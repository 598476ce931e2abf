"""
Transactional outbox: domain events written into the same SQLite transaction as the data.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Sequence

from ..adapters.sqlite import SQLiteAdapter
from ..utils import get_logger
from .recorder import DomainEvent

DEFAULT_OUTBOX_TABLE = "domain_event_outbox"


class SQLiteOutboxSink:
    """
    Appends each batch to an outbox table through the coordinator's own adapter.

    Since the rows are written before the adapter commits, events become
    visible exactly when the data does, and vanish with it on rollback.
    """

    def __init__(self, adapter: SQLiteAdapter, *, table_name: str = DEFAULT_OUTBOX_TABLE) -> None:
        self.adapter = adapter
        self.table_name = table_name
        self.logger = get_logger("events.outbox")

    def ensure_table(self) -> None:
        self.adapter.execute(self.adapter.schema.create_outbox_sql(self.table_name))

    def append(self, events: Sequence[DomainEvent]) -> None:
        commit_id = uuid.uuid4().hex
        dialect = self.adapter.dialect
        columns = (
            "commit_id",
            "sequence_number",
            "entity_type",
            "entity_id",
            "kind",
            "payload",
            "occurred_at",
        )
        column_sql = ", ".join(dialect.quote_identifier(column) for column in columns)
        placeholders = ", ".join(dialect.parameter_placeholder() for _ in columns)
        sql = f"INSERT INTO {dialect.format_table(self.table_name)} ({column_sql}) VALUES ({placeholders})"
        for event in events:
            self.adapter.execute(
                sql,
                (
                    commit_id,
                    event.sequence_number,
                    event.entity_type,
                    None if event.entity_id is None else str(event.entity_id),
                    event.kind.value,
                    json.dumps(dict(event.payload), default=str, sort_keys=True),
                    event.occurred_at.isoformat(),
                ),
            )
        self.logger.debug("Wrote %s event(s) to outbox batch %s", len(events), commit_id)

    def read_all(self) -> List[Dict[str, Any]]:
        dialect = self.adapter.dialect
        sql = (
            f"SELECT * FROM {dialect.format_table(self.table_name)} "
            f"ORDER BY {dialect.quote_identifier('id')}"
        )
        rows = []
        for row in self.adapter.execute(sql).fetchall():
            record = dict(row)
            record["payload"] = json.loads(record["payload"])
            rows.append(record)
        return rows
