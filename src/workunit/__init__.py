"""
workunit public package initialization.

Unit-of-work change tracking and transaction coordination: one canonical
instance per (type, id), atomic ordered commits, optimistic version checks,
savepoint-backed nested scopes, and domain events flushed with the data.
"""

from .adapters import ConnectionConfig, InMemoryAdapter, InMemoryDatabase, SQLiteAdapter  # noqa: F401
from .core import BooleanField, Entity, FloatField, IntegerField, StringField  # noqa: F401
from .errors import (  # noqa: F401
    ConflictError,
    EventSinkError,
    IdentityConflict,
    PersistenceError,
    RegistrationError,
    ScopeError,
    WorkUnitError,
)
from .events import (  # noqa: F401
    DispatchingEventSink,
    DomainEvent,
    EventKind,
    InMemoryEventSink,
    SQLiteOutboxSink,
)
from .persistence import Repository, TransactionCoordinator, UnitOfWorkManager  # noqa: F401

__all__ = [
    "BooleanField",
    "ConflictError",
    "ConnectionConfig",
    "DispatchingEventSink",
    "DomainEvent",
    "Entity",
    "EventKind",
    "EventSinkError",
    "FloatField",
    "IdentityConflict",
    "InMemoryAdapter",
    "InMemoryDatabase",
    "InMemoryEventSink",
    "IntegerField",
    "PersistenceError",
    "RegistrationError",
    "Repository",
    "SQLiteAdapter",
    "SQLiteOutboxSink",
    "ScopeError",
    "StringField",
    "TransactionCoordinator",
    "UnitOfWorkManager",
    "WorkUnitError",
]
