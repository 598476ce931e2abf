"""
Entity base class and metadata collected by :class:`EntityMeta`.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Type, TypeVar

from .fields import Field, IdField, VersionField


class EntityConfigurationError(Exception):
    """Raised when an entity class is misconfigured."""


_FIRST_CAP_RE = re.compile("(.)([A-Z][a-z]+)")
_ALL_CAP_RE = re.compile("([a-z0-9])([A-Z])")


def _snake_case(name: str) -> str:
    step1 = _FIRST_CAP_RE.sub(r"\1_\2", name)
    return _ALL_CAP_RE.sub(r"\1_\2", step1).lower()


@dataclass
class EntityOptions:
    """
    Container for entity metadata calculated by :class:`EntityMeta`.
    """

    entity: Type["Entity"]
    table_name: str = ""
    abstract: bool = False
    fields: "OrderedDict[str, Field]" = field(default_factory=OrderedDict)
    id_field: Optional[Field] = None
    version_field: Optional[Field] = None

    def add_field(self, field_obj: Field) -> None:
        name = field_obj.require_name()
        if name in self.fields:
            raise EntityConfigurationError(
                f"Duplicate field name '{name}' on entity '{self.entity.__name__}'"
            )
        self.fields[name] = field_obj
        if isinstance(field_obj, IdField):
            self.id_field = field_obj
        elif isinstance(field_obj, VersionField):
            self.version_field = field_obj

    def get_field(self, name: str) -> Field:
        try:
            return self.fields[name]
        except KeyError as exc:
            raise KeyError(f"Unknown field '{name}' on entity '{self.entity.__name__}'") from exc

    def get_fields(self) -> Iterable[Field]:
        return self.fields.values()

    def tracked_fields(self) -> list[Field]:
        return [f for f in self.fields.values() if f.tracked]

    def field_for_column(self, column: str) -> Field | None:
        for candidate in self.fields.values():
            if candidate.column_name() == column:
                return candidate
        return None


TEntity = TypeVar("TEntity", bound="Entity")


class EntityMeta(type):
    """
    Metaclass collecting field descriptors and adding identity/version columns.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "EntityMeta":
        if not bases:
            return super().__new__(mcls, name, bases, attrs)

        declared: Dict[str, Field] = {}
        for attr_name, value in list(attrs.items()):
            if isinstance(value, Field):
                declared[attr_name] = attrs.pop(attr_name)

        for reserved in ("id", "version"):
            if reserved in declared:
                raise EntityConfigurationError(
                    f"Entity '{name}' declares reserved field '{reserved}'; "
                    "identity and version columns are managed by the unit of work."
                )

        cls = super().__new__(mcls, name, bases, attrs)

        meta = getattr(cls, "Meta", None)
        table_name = getattr(meta, "table", _snake_case(name)) if meta else _snake_case(name)
        abstract = getattr(meta, "abstract", False) if meta else False
        cls._meta = EntityOptions(entity=cls, table_name=table_name, abstract=abstract)

        inherited: list[tuple[str, Field]] = []
        for base in bases:
            base_meta = getattr(base, "_meta", None)
            if base_meta is not None and base_meta.abstract:
                inherited.extend((f.require_name(), f) for f in base_meta.tracked_fields())

        id_field = IdField()
        id_field.contribute_to_class(cls, "id")
        cls._meta.add_field(id_field)
        version_field = VersionField()
        version_field.contribute_to_class(cls, "version")
        cls._meta.add_field(version_field)

        ordered = sorted(declared.items(), key=lambda item: item[1].creation_counter)
        for attr_name, field_obj in inherited + ordered:
            if field_obj.entity is not None and field_obj.entity is not cls:
                field_obj = _rebind(field_obj)
            field_obj.contribute_to_class(cls, attr_name)
            cls._meta.add_field(field_obj)

        return cls


def _rebind(field_obj: Field) -> Field:
    clone = object.__new__(field_obj.__class__)
    clone.__dict__.update(field_obj.__dict__)
    clone.entity = None
    return clone


class Entity(metaclass=EntityMeta):
    """
    Value carrier identified by ``(type, id)`` with an optimistic ``version``.

    Lifecycle state (change-set membership, committed snapshots) is owned by the
    unit of work, never by the entity. Adapters only rely on the capability
    methods :meth:`table_name`, :meth:`to_row` and :meth:`from_row`.
    """

    _meta: EntityOptions

    def __init__(self, **kwargs: Any) -> None:
        self._values: Dict[str, Any] = {}
        unknown = set(kwargs) - set(self._meta.fields)
        if unknown:
            raise TypeError(
                f"{self.__class__.__name__} got unexpected field(s): {', '.join(sorted(unknown))}"
            )
        for field_obj in self._meta.get_fields():
            name = field_obj.require_name()
            if name in kwargs:
                setattr(self, name, kwargs[name])
            elif field_obj.has_default:
                setattr(self, name, field_obj.get_default())
            else:
                self._values[name] = None

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{name}={self._values.get(name)!r}" for name in self._meta.fields
        )
        return f"<{self.__class__.__name__} {parts}>"

    # Capability interface ----------------------------------------------
    @classmethod
    def entity_name(cls) -> str:
        return cls.__name__

    @classmethod
    def table_name(cls) -> str:
        return cls._meta.table_name

    def to_row(self) -> Dict[str, Any]:
        """
        Column-keyed mapping of every field, including ``id`` and ``version``.
        """
        return {
            f.column_name(): f.to_db(self._values.get(f.require_name()))
            for f in self._meta.get_fields()
        }

    @classmethod
    def from_row(cls: Type[TEntity], row: Mapping[str, Any]) -> TEntity:
        values: Dict[str, Any] = {}
        for column, value in dict(row).items():
            field_obj = cls._meta.field_for_column(column)
            if field_obj is not None:
                values[field_obj.require_name()] = value
        return cls(**values)

    # State helpers -----------------------------------------------------
    def field_values(self) -> Dict[str, Any]:
        """
        Snapshot of tracked field values, excluding identity and version.
        """
        return {f.require_name(): self._values.get(f.require_name()) for f in self._meta.tracked_fields()}
