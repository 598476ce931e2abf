"""
Persistence adapter interfaces and implementations.
"""

from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    PersistenceAdapter,
)
from .memory import InMemoryAdapter, InMemoryDatabase
from .sqlite import SQLiteAdapter

__all__ = [
    "ConnectionConfig",
    "PersistenceAdapter",
    "AdapterError",
    "AdapterConfigurationError",
    "AdapterConnectionError",
    "AdapterExecutionError",
    "AdapterTransactionError",
    "InMemoryAdapter",
    "InMemoryDatabase",
    "SQLiteAdapter",
]
