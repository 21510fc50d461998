"""Core components for Schemawright."""

from schemawright.core.config import BackendConfig, BackendKind
from schemawright.core.types import (
    EntitySpec,
    FieldSpec,
    FieldType,
    ManyToMany,
    RelationshipKind,
    RelationshipSpec,
    SchemaSnapshot,
    SingleReference,
)

__all__ = [
    "BackendConfig",
    "BackendKind",
    "FieldType",
    "FieldSpec",
    "EntitySpec",
    "RelationshipKind",
    "RelationshipSpec",
    "SingleReference",
    "ManyToMany",
    "SchemaSnapshot",
]
