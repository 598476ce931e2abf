"""
Field descriptors declaring the tracked state of entities.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Sequence, cast

if TYPE_CHECKING:
    from .entity import Entity


class FieldError(Exception):
    """Internal exception for field configuration issues."""


class Field:
    """
    Base class for entity field descriptors.

    Values live in the owning instance's ``_values`` mapping. Fields also carry
    the column metadata adapters need to build rows and schemas.
    """

    _creation_counter = 0

    #: Participates in dirty checking and domain event payloads.
    tracked = True

    def __init__(
        self,
        *,
        nullable: bool = True,
        default: Any = None,
        unique: bool = False,
        db_type: Optional[str] = None,
        db_column: Optional[str] = None,
        choices: Optional[Sequence[Any]] = None,
    ) -> None:
        self.nullable = nullable
        self.default = default
        self.unique = unique
        self.db_type = db_type
        self.db_column = db_column
        self.choices = tuple(choices) if choices is not None else None

        self.entity: type["Entity"] | None = None
        self.name: str | None = None
        self.creation_counter = Field._creation_counter
        Field._creation_counter += 1

    # Descriptor protocol -------------------------------------------------
    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        entity = cast("Entity", instance)
        return entity._values.get(self.require_name())

    def __set__(self, instance: object, value: Any) -> None:
        entity = cast("Entity", instance)
        name = self.require_name()
        if value is None:
            if not self.nullable:
                raise ValueError(f"Field '{name}' cannot be None")
            entity._values[name] = None
            return

        if self.choices and value not in self.choices:
            raise ValueError(f"Value '{value}' for field '{name}' not in choices {self.choices}")

        entity._values[name] = self.to_python(value)

    # Metadata helpers ----------------------------------------------------
    def contribute_to_class(self, entity: type["Entity"], name: str) -> None:
        self.entity = entity
        self.name = name
        if self.db_column is None:
            self.db_column = name
        setattr(entity, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise FieldError("Field name is not set.")
        return self.name

    def column_name(self) -> str:
        return self.db_column or self.require_name()

    # Conversion ----------------------------------------------------------
    @property
    def has_default(self) -> bool:
        return self.default is not None

    def get_default(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    def to_python(self, value: Any) -> Any:
        return value

    def to_db(self, value: Any) -> Any:
        return value


class IdField(Field):
    """
    Identity assigned by the persistence adapter on first insert.
    """

    tracked = False

    def __init__(self) -> None:
        super().__init__(nullable=True, db_type="INTEGER")

    def to_python(self, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid identity value '{value}'") from exc


class VersionField(Field):
    """
    Optimistic-locking counter: 1 after insert, +1 per applied update.
    """

    tracked = False

    def __init__(self) -> None:
        super().__init__(nullable=True, db_type="INTEGER")

    def to_python(self, value: Any) -> int:
        try:
            version = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid version value '{value}'") from exc
        if version < 1:
            raise ValueError(f"Version must be >= 1, got {version}")
        return version


class IntegerField(Field):
    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "INTEGER")
        super().__init__(**kwargs)

    def to_python(self, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid integer value '{value}'") from exc


class FloatField(Field):
    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "REAL")
        super().__init__(**kwargs)

    def to_python(self, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid float value '{value}'") from exc


class BooleanField(Field):
    def __init__(self, *, default: Any = False, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "BOOLEAN")
        kwargs.setdefault("nullable", False)
        super().__init__(default=default, **kwargs)

    @property
    def has_default(self) -> bool:
        return True

    def to_python(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in {"true", "t", "1"}:
                return True
            if lowered in {"false", "f", "0"}:
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        raise ValueError(f"Invalid boolean value '{value}'")

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        return 1 if value else 0


class StringField(Field):
    def __init__(self, *, max_length: int = 255, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)
        self.max_length = max_length

    def to_python(self, value: Any) -> str:
        result = str(value)
        if self.max_length and len(result) > self.max_length:
            raise ValueError(
                f"Value for field '{self.require_name()}' exceeds max_length {self.max_length}"
            )
        return result
