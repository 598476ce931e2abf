"""
Scoped acquisition of units of work.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generator, Optional

from ..adapters.base import ConnectionConfig, PersistenceAdapter
from ..adapters.sqlite import SQLiteAdapter
from ..events import EventSink
from ..utils import get_logger, set_correlation_id
from .coordinator import TransactionCoordinator

AdapterFactory = Callable[[], PersistenceAdapter]
SinkFactory = Callable[[PersistenceAdapter], EventSink]

DEFAULT_ENV_VAR = "WORKUNIT_DATABASE_URL"


class UnitOfWorkManager:
    """
    Hands out one coordinator per :meth:`scope`, each on its own adapter connection.

    ``event_sink`` is shared by every scope; ``event_sink_factory`` builds a sink
    per connection, which is what a transactional outbox needs.
    """

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        config: Optional[ConnectionConfig] = None,
        *,
        event_sink: Optional[EventSink] = None,
        event_sink_factory: Optional[SinkFactory] = None,
        detect_changes: bool = False,
        slow_commit_ms: float = 500,
    ) -> None:
        if event_sink is not None and event_sink_factory is not None:
            raise ValueError("Pass either event_sink or event_sink_factory, not both.")
        self.adapter_factory = adapter_factory
        self.config = config or ConnectionConfig(url="sqlite:///:memory:")
        self.event_sink = event_sink
        self.event_sink_factory = event_sink_factory
        self.detect_changes = detect_changes
        self.slow_commit_ms = slow_commit_ms
        self.logger = get_logger("persistence.manager")

    @classmethod
    def from_env(cls, env_var: str = DEFAULT_ENV_VAR, **kwargs) -> "UnitOfWorkManager":
        """
        Build an SQLite-backed manager from a database URL held in ``env_var``.
        """

        config = ConnectionConfig.from_env(env_var)
        return cls(SQLiteAdapter, config, **kwargs)

    def open_adapter(self) -> PersistenceAdapter:
        adapter = self.adapter_factory()
        adapter.connect(self.config)
        return adapter

    @contextmanager
    def scope(self, *, correlation_id: Optional[str] = None) -> Generator[TransactionCoordinator, None, None]:
        """
        Commit on normal exit, roll back on any exception, and always release the connection.
        """

        set_correlation_id(correlation_id)
        adapter = self.open_adapter()
        try:
            sink = self.event_sink_factory(adapter) if self.event_sink_factory else self.event_sink
            coordinator = TransactionCoordinator(
                adapter,
                event_sink=sink,
                detect_changes=self.detect_changes,
                slow_commit_ms=self.slow_commit_ms,
            )
            coordinator.begin()
            try:
                yield coordinator
            except BaseException:
                if coordinator.is_active:
                    coordinator.rollback()
                raise
            else:
                if coordinator.is_active:
                    coordinator.commit()
            finally:
                coordinator.close()
        finally:
            adapter.close()
            self.logger.debug("Scope released (%s)", self.config.descriptive_label())
