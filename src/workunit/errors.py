"""
Error hierarchy shared by the unit-of-work engine.
"""

from __future__ import annotations

from typing import Any


class WorkUnitError(Exception):
    """Base error for all unit-of-work failures."""


class RegistrationError(WorkUnitError):
    """Raised when an entity is registered into an invalid state."""


class IdentityConflict(WorkUnitError):
    """
    Raised when two distinct instances claim the same (type, id) within one scope.
    """

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"A different instance of {entity_type}(id={entity_id!r}) is already tracked in this scope."
        )


class ConflictError(WorkUnitError):
    """
    Optimistic version mismatch detected while applying an update.
    """

    def __init__(self, entity_type: str, entity_id: Any, expected: int | None, actual: int | None) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        if actual is None:
            detail = "row no longer exists"
        else:
            detail = f"expected version {expected}, found {actual}"
        super().__init__(f"Concurrent modification of {entity_type}(id={entity_id!r}): {detail}.")


class PersistenceError(WorkUnitError):
    """Raised when the persistence adapter or event sink fails during commit."""


class EventSinkError(PersistenceError):
    """Raised when the event sink rejects a batch of domain events."""


class ScopeError(WorkUnitError):
    """Raised when a scope is used outside its active lifetime or nested incorrectly."""
