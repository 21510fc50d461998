"""Schema model types for Schemawright.

These pydantic models describe the desired schema: entities, their fields and
relationships, and immutable snapshots of a whole schema. They carry no
behavior beyond validation and lookup.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from schemawright.exceptions import (
    DuplicateNameError,
    EntityNotFoundError,
    FieldNotFoundError,
    InvalidPrimaryKeyError,
    SchemaError,
    UnresolvedReferenceError,
)


class FieldType(StrEnum):
    """Logical field types, independent of any backend."""

    BOOL = "bool"
    INT = "int"  # 32-bit
    BIGINT = "bigint"  # 64-bit
    REAL = "real"  # double precision
    TEXT = "text"
    DATE = "date"
    TIMESTAMP = "timestamp"
    BLOB = "blob"
    UUID = "uuid"
    JSON = "json"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid field type values."""
        return [t.value for t in cls]


AUTO_TYPES = frozenset({FieldType.INT, FieldType.BIGINT, FieldType.UUID})
DEFAULTABLE_TYPES = frozenset(
    {
        FieldType.BOOL,
        FieldType.INT,
        FieldType.BIGINT,
        FieldType.REAL,
        FieldType.TEXT,
        FieldType.JSON,
    }
)
KEYLESS_TYPES = frozenset({FieldType.JSON, FieldType.BLOB})

# Attribute names an ObjectHandle uses itself; columns cannot take them
RESERVED_NAMES = frozenset(
    {"entity", "entity_name", "state", "pk", "pk_pending", "dirty", "values", "ensure_writable"}
)


class RelationshipKind(StrEnum):
    """Relationship variants."""

    SINGLE_REFERENCE = "single_reference"  # e.g., Post.blog -> Blog
    MANY_TO_MANY = "many_to_many"  # e.g., Post.tags <-> Tag

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid relationship kind values."""
        return [k.value for k in cls]


class FieldSpec(BaseModel):
    """Specification for one scalar field (one column)."""

    name: str = Field(..., description="Field name, unique within the entity")
    type: FieldType = Field(default=FieldType.TEXT, description="Logical field type")
    nullable: bool = Field(default=False, description="Whether NULL is allowed")
    default: Any = Field(default=None, description="Default value for new and existing rows")
    primary_key: bool = Field(default=False, description="Whether this is the primary key")
    auto: bool = Field(default=False, description="Whether the database generates the value")
    unique: bool = Field(default=False, description="Whether values must be distinct")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_default(self) -> FieldSpec:
        if self.default is None:
            return self
        if self.type not in DEFAULTABLE_TYPES:
            raise SchemaError(
                f"Field '{self.name}' of type {self.type} cannot declare a default. "
                f"Defaults are supported for: {', '.join(sorted(DEFAULTABLE_TYPES))}",
                {"field_name": self.name, "type": str(self.type)},
            )
        expected: tuple[type, ...] | None = {
            FieldType.BOOL: (bool,),
            FieldType.INT: (int,),
            FieldType.BIGINT: (int,),
            FieldType.REAL: (int, float),
            FieldType.TEXT: (str,),
        }.get(self.type)
        wrong_bool = self.type != FieldType.BOOL and isinstance(self.default, bool)
        if expected is not None and (not isinstance(self.default, expected) or wrong_bool):
            raise SchemaError(
                f"Default {self.default!r} does not match type {self.type} of field '{self.name}'.",
                {"field_name": self.name, "type": str(self.type), "default": repr(self.default)},
            )
        return self


class SingleReference(BaseModel):
    """Foreign key from the owning entity to the target's primary key.

    Stored as a column named after the relationship.
    """

    kind: Literal["single_reference"] = "single_reference"
    name: str = Field(..., description="Relationship (and column) name, e.g. 'blog' on Post")
    target: str = Field(..., description="Target entity name")
    nullable: bool = Field(default=False, description="Whether the reference may be empty")

    model_config = ConfigDict(frozen=True)


class ManyToMany(BaseModel):
    """Many-to-many relationship, stored in an implicit join entity."""

    kind: Literal["many_to_many"] = "many_to_many"
    name: str = Field(..., description="Relationship name, e.g. 'tags' on Post")
    target: str = Field(..., description="Target entity name")

    model_config = ConfigDict(frozen=True)


RelationshipSpec = Annotated[SingleReference | ManyToMany, Field(discriminator="kind")]


def join_entity_name(entity_name: str, relationship_name: str) -> str:
    """Name of the implicit join entity backing a many-to-many relationship."""
    return f"{entity_name}_{relationship_name}_Many"


class EntitySpec(BaseModel):
    """Specification of one entity (one table)."""

    name: str = Field(..., description="Entity name, unique within the schema")
    fields: tuple[FieldSpec, ...] = Field(default=(), description="Fields in declared order")
    relationships: tuple[RelationshipSpec, ...] = Field(
        default=(), description="Relationships in declared order"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_entity(self) -> EntitySpec:
        seen: set[str] = set()
        for name in [f.name for f in self.fields] + [r.name for r in self.relationships]:
            if name in seen:
                raise DuplicateNameError(name, f"entity '{self.name}'")
            seen.add(name)

        for name in [f.name for f in self.fields] + [r.name for r in self.references]:
            if name in RESERVED_NAMES or name.startswith("_"):
                raise SchemaError(
                    f"Column name '{self.name}.{name}' is reserved for record handles.",
                    {
                        "entity_name": self.name,
                        "field_name": name,
                        "reserved": sorted(RESERVED_NAMES),
                    },
                )

        keys = [f for f in self.fields if f.primary_key]
        if len(keys) != 1:
            raise InvalidPrimaryKeyError(
                self.name, f"expected exactly one primary key field, found {len(keys)}"
            )
        pk = keys[0]
        if pk.nullable:
            raise InvalidPrimaryKeyError(self.name, f"primary key '{pk.name}' cannot be nullable")
        if pk.type in KEYLESS_TYPES:
            raise InvalidPrimaryKeyError(
                self.name, f"primary key '{pk.name}' cannot be of type {pk.type}"
            )

        for f in self.fields:
            if f.auto and not f.primary_key:
                raise SchemaError(
                    f"Field '{self.name}.{f.name}' is autogenerated but not the primary key.",
                    {"entity_name": self.name, "field_name": f.name},
                )
            if f.auto and f.type not in AUTO_TYPES:
                raise SchemaError(
                    f"Autogenerated field '{self.name}.{f.name}' must be int, bigint or uuid, "
                    f"not {f.type}.",
                    {"entity_name": self.name, "field_name": f.name, "type": str(f.type)},
                )
            if f.unique and f.type in KEYLESS_TYPES:
                raise SchemaError(
                    f"Field '{self.name}.{f.name}' of type {f.type} cannot be unique.",
                    {"entity_name": self.name, "field_name": f.name, "type": str(f.type)},
                )
        return self

    @property
    def pk(self) -> FieldSpec:
        """The primary-key field."""
        return next(f for f in self.fields if f.primary_key)

    @property
    def references(self) -> list[SingleReference]:
        """Single-reference relationships, in declared order."""
        return [r for r in self.relationships if isinstance(r, SingleReference)]

    @property
    def many(self) -> list[ManyToMany]:
        """Many-to-many relationships, in declared order."""
        return [r for r in self.relationships if isinstance(r, ManyToMany)]

    @property
    def column_names(self) -> list[str]:
        """Physical column order: declared fields, then single-reference columns."""
        return [f.name for f in self.fields] + [r.name for r in self.references]

    def get_field(self, name: str) -> FieldSpec | None:
        """Return a field by name, or None."""
        return next((f for f in self.fields if f.name == name), None)

    def get_relationship(self, name: str) -> SingleReference | ManyToMany | None:
        """Return a relationship by name, or None."""
        return next((r for r in self.relationships if r.name == name), None)

    def field(self, name: str) -> FieldSpec:
        """Return a field by name.

        Raises:
            FieldNotFoundError: If the entity has no such field
        """
        found = self.get_field(name)
        if found is None:
            raise FieldNotFoundError(name, self.name, [f.name for f in self.fields])
        return found

    def without_many(self) -> EntitySpec:
        """Copy of this entity without its many-to-many relationships."""
        return self.model_copy(update={"relationships": tuple(self.references)})


class SchemaSnapshot(BaseModel):
    """An immutable, validated description of a whole schema.

    A new snapshot is always a fresh value; nothing mutates one in place.
    """

    version: int = Field(default=0, ge=0, description="Monotonically increasing version")
    entities: dict[str, EntitySpec] = Field(
        default_factory=dict, description="Entities by name, in declared order"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_snapshot(self) -> SchemaSnapshot:
        for key, entity in self.entities.items():
            if key != entity.name:
                raise SchemaError(
                    f"Entity registered as '{key}' is named '{entity.name}'.",
                    {"key": key, "entity_name": entity.name},
                )

        join_names: set[str] = set()
        for entity in self.entities.values():
            for rel in entity.relationships:
                if rel.target not in self.entities:
                    raise UnresolvedReferenceError(entity.name, rel.name, rel.target)
                if isinstance(rel, ManyToMany):
                    join_name = join_entity_name(entity.name, rel.name)
                    if join_name in self.entities or join_name in join_names:
                        raise DuplicateNameError(join_name, "the schema (join entity)")
                    join_names.add(join_name)
        return self

    @classmethod
    def build(
        cls,
        entities: Iterable[EntitySpec | Mapping[str, Any]],
        version: int = 0,
    ) -> SchemaSnapshot:
        """Finalize a snapshot from entities given in any order.

        References may point at entities declared later in ``entities``; they are
        resolved once every entity is known.

        Raises:
            SchemaError: If the description is invalid
        """
        resolved: dict[str, EntitySpec] = {}
        try:
            for raw in entities:
                entity = raw if isinstance(raw, EntitySpec) else EntitySpec.model_validate(raw)
                if entity.name in resolved:
                    raise DuplicateNameError(entity.name, "the schema")
                resolved[entity.name] = entity
            return cls(version=version, entities=resolved)
        except ValidationError as e:
            raise SchemaError(f"Invalid model description: {e}", {"errors": e.errors()}) from e

    @classmethod
    def empty(cls) -> SchemaSnapshot:
        """The snapshot of a database with no managed entities."""
        return cls()

    def entity(self, name: str) -> EntitySpec:
        """Return an entity by name.

        Raises:
            EntityNotFoundError: If the snapshot has no such entity
        """
        if name not in self.entities:
            raise EntityNotFoundError(name, list(self.entities))
        return self.entities[name]

    def with_version(self, version: int) -> SchemaSnapshot:
        """Copy of this snapshot stamped with a different version."""
        return self.model_copy(update={"version": version})

    def equivalent(self, other: SchemaSnapshot) -> bool:
        """Compare schema shape, ignoring version and declaration order."""

        def shape(snapshot: SchemaSnapshot) -> dict[str, Any]:
            return {
                name: (
                    {f.name: f for f in entity.fields},
                    {r.name: r for r in entity.relationships},
                )
                for name, entity in snapshot.entities.items()
            }

        return shape(self) == shape(other)
