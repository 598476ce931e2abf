"""
Entity declarations: field descriptors and the entity base class.
"""

from .entity import Entity, EntityConfigurationError, EntityMeta, EntityOptions
from .fields import (
    BooleanField,
    Field,
    FloatField,
    IdField,
    IntegerField,
    StringField,
    VersionField,
)

__all__ = [
    "BooleanField",
    "Entity",
    "EntityConfigurationError",
    "EntityMeta",
    "EntityOptions",
    "Field",
    "FloatField",
    "IdField",
    "IntegerField",
    "StringField",
    "VersionField",
]
