"""
Field-level diffing and optimistic version checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping

from ..errors import ConflictError


@dataclass(frozen=True)
class FieldChange:
    old: Any
    new: Any


@dataclass(frozen=True)
class FieldDiff:
    """
    Immutable set of changed fields; falsy when nothing changed.
    """

    changes: Mapping[str, FieldChange] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def fields(self) -> list[str]:
        return list(self.changes)

    def as_payload(self) -> Dict[str, Dict[str, Any]]:
        return {name: {"old": change.old, "new": change.new} for name, change in self.changes.items()}


class ConflictDetector:
    """
    Stateless helper used by the coordinator while applying updates.
    """

    def compute_diff(self, original: Mapping[str, Any] | None, current: Mapping[str, Any]) -> FieldDiff:
        """
        Compare every field of ``current`` with ``original``.

        A missing ``original`` means the committed state is unknown, so every
        field is reported as changed.
        """
        if original is None:
            return FieldDiff({name: FieldChange(None, value) for name, value in current.items()})
        changes: Dict[str, FieldChange] = {}
        for name, value in current.items():
            previous = original.get(name)
            if name not in original or previous != value:
                changes[name] = FieldChange(previous, value)
        return FieldDiff(changes)

    def check_version(
        self,
        held_version: int | None,
        persisted_version: int | None,
        *,
        entity_type: str,
        entity_id: Any,
    ) -> None:
        if persisted_version is None or held_version != persisted_version:
            raise ConflictError(entity_type, entity_id, expected=held_version, actual=persisted_version)
