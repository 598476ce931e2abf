"""
Unit-of-work engine: identity map, change tracking, conflict detection and coordination.
"""

from .change_tracker import ChangeSet, ChangeState, ChangeTracker, TemporaryKey, TrackedEntry
from .conflicts import ConflictDetector, FieldChange, FieldDiff
from .coordinator import ScopeState, TransactionCoordinator
from .identity_map import EntityRegistry
from .manager import UnitOfWorkManager
from .repository import Repository

__all__ = [
    "ChangeSet",
    "ChangeState",
    "ChangeTracker",
    "ConflictDetector",
    "EntityRegistry",
    "FieldChange",
    "FieldDiff",
    "Repository",
    "ScopeState",
    "TemporaryKey",
    "TrackedEntry",
    "TransactionCoordinator",
    "UnitOfWorkManager",
]
