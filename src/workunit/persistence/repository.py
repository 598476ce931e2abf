"""
Caller-facing repository delegating to the active unit of work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Type, TypeVar

from ..core.entity import Entity

if TYPE_CHECKING:
    from .coordinator import TransactionCoordinator

TEntity = TypeVar("TEntity", bound=Entity)


class Repository(Generic[TEntity]):
    """
    Collection-like access to one entity type inside a coordinator's scope.

    Nothing is written until the coordinator commits.
    """

    def __init__(self, coordinator: "TransactionCoordinator", entity_type: Type[TEntity]) -> None:
        self.coordinator = coordinator
        self.entity_type = entity_type

    def add(self, entity: TEntity) -> TEntity:
        self._check_type(entity)
        self.coordinator.register_new(entity)
        return entity

    def update(self, entity: TEntity) -> TEntity:
        self._check_type(entity)
        self.coordinator.register_dirty(entity)
        return entity

    def remove(self, entity: TEntity) -> None:
        self._check_type(entity)
        self.coordinator.register_removed(entity)

    def get(self, entity_id: Any) -> TEntity | None:
        return self.coordinator.load(self.entity_type, entity_id)

    def _check_type(self, entity: Entity) -> None:
        if not isinstance(entity, self.entity_type):
            raise TypeError(
                f"Repository for {self.entity_type.__name__} cannot handle {type(entity).__name__}"
            )
