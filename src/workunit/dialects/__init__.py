"""
Dialect strategies for SQL-backed adapters.
"""

from .base import Dialect, DialectCapabilities
from .sqlite import SQLiteDialect

__all__ = ["Dialect", "DialectCapabilities", "SQLiteDialect"]
