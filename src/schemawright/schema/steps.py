"""Migration steps.

A step is one atomic, backend-neutral schema change. Steps carry the full specs
they touch so each can be applied on its own and inverted. ``apply_step`` replays
a step on a snapshot without touching any database; the migration engine uses it
to reconstruct the current schema from recorded history.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from schemawright.core.types import (
    EntitySpec,
    FieldSpec,
    ManyToMany,
    RelationshipSpec,
    SchemaSnapshot,
    SingleReference,
)
from schemawright.exceptions import EntityNotFoundError, SchemaError


class _Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def entity_name(self) -> str:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


class CreateEntity(_Step):
    """Create a table. Many-to-many relationships are added by separate steps."""

    kind: Literal["create_entity"] = "create_entity"
    entity: EntitySpec

    @property
    def entity_name(self) -> str:
        return self.entity.name

    def invert(self) -> DropEntity:
        return DropEntity(entity=self.entity)

    def describe(self) -> str:
        return f"create entity {self.entity.name}"


class DropEntity(_Step):
    """Drop a table. Carries the full spec so the drop can be inverted."""

    kind: Literal["drop_entity"] = "drop_entity"
    entity: EntitySpec

    @property
    def entity_name(self) -> str:
        return self.entity.name

    def invert(self) -> CreateEntity:
        return CreateEntity(entity=self.entity)

    def describe(self) -> str:
        return f"drop entity {self.entity.name}"


class AddField(_Step):
    kind: Literal["add_field"] = "add_field"
    entity: str
    field: FieldSpec

    @property
    def entity_name(self) -> str:
        return self.entity

    def invert(self) -> RemoveField:
        return RemoveField(entity=self.entity, field=self.field)

    def describe(self) -> str:
        return f"add field {self.entity}.{self.field.name} ({self.field.type})"


class RemoveField(_Step):
    kind: Literal["remove_field"] = "remove_field"
    entity: str
    field: FieldSpec

    @property
    def entity_name(self) -> str:
        return self.entity

    def invert(self) -> AddField:
        return AddField(entity=self.entity, field=self.field)

    def describe(self) -> str:
        return f"remove field {self.entity}.{self.field.name}"


class AlterField(_Step):
    """Change a field's type, nullability or default in place."""

    kind: Literal["alter_field"] = "alter_field"
    entity: str
    old: FieldSpec
    new: FieldSpec

    @property
    def entity_name(self) -> str:
        return self.entity

    @property
    def field_name(self) -> str:
        return self.new.name

    def invert(self) -> AlterField:
        return AlterField(entity=self.entity, old=self.new, new=self.old)

    def describe(self) -> str:
        if self.old.type != self.new.type:
            change = f"{self.old.type} -> {self.new.type}"
            return f"alter field {self.entity}.{self.field_name} ({change})"
        return f"alter field {self.entity}.{self.field_name}"


class AddRelationship(_Step):
    kind: Literal["add_relationship"] = "add_relationship"
    entity: str
    relationship: RelationshipSpec

    @property
    def entity_name(self) -> str:
        return self.entity

    def invert(self) -> RemoveRelationship:
        return RemoveRelationship(entity=self.entity, relationship=self.relationship)

    def describe(self) -> str:
        rel = self.relationship
        return f"add {rel.kind} {self.entity}.{rel.name} -> {rel.target}"


class RemoveRelationship(_Step):
    kind: Literal["remove_relationship"] = "remove_relationship"
    entity: str
    relationship: RelationshipSpec

    @property
    def entity_name(self) -> str:
        return self.entity

    def invert(self) -> AddRelationship:
        return AddRelationship(entity=self.entity, relationship=self.relationship)

    def describe(self) -> str:
        rel = self.relationship
        return f"remove {rel.kind} {self.entity}.{rel.name} -> {rel.target}"


class AlterRelationship(_Step):
    """Change whether a single reference may be empty, keeping its stored keys."""

    kind: Literal["alter_relationship"] = "alter_relationship"
    entity: str
    old: SingleReference
    new: SingleReference

    @property
    def entity_name(self) -> str:
        return self.entity

    def invert(self) -> AlterRelationship:
        return AlterRelationship(entity=self.entity, old=self.new, new=self.old)

    def describe(self) -> str:
        state = "nullable" if self.new.nullable else "required"
        return (
            f"alter {self.new.kind} {self.entity}.{self.new.name} -> {self.new.target} ({state})"
        )


MigrationStep = Annotated[
    CreateEntity
    | DropEntity
    | AddField
    | RemoveField
    | AlterField
    | AddRelationship
    | RemoveRelationship
    | AlterRelationship,
    Field(discriminator="kind"),
]


def invert_steps(steps: Iterable[MigrationStep]) -> list[MigrationStep]:
    """Steps that undo ``steps``, in reverse order.

    Schema shape is restored; data removed by RemoveField or DropEntity is not.
    """
    return [step.invert() for step in reversed(list(steps))]


def _replace_entity(snapshot: SchemaSnapshot, entity: EntitySpec) -> dict[str, EntitySpec]:
    entities = dict(snapshot.entities)
    entities[entity.name] = entity
    return entities


def apply_step(snapshot: SchemaSnapshot, step: MigrationStep) -> SchemaSnapshot:
    """Return the snapshot that results from applying ``step`` to ``snapshot``.

    Raises:
        SchemaError: If the step does not fit the snapshot
    """
    entities: dict[str, EntitySpec]

    if isinstance(step, CreateEntity):
        if step.entity.name in snapshot.entities:
            raise SchemaError(f"Entity '{step.entity.name}' already exists.")
        entities = _replace_entity(snapshot, step.entity)
    elif isinstance(step, DropEntity):
        snapshot.entity(step.entity.name)
        entities = {k: v for k, v in snapshot.entities.items() if k != step.entity.name}
    else:
        if step.entity not in snapshot.entities:
            raise EntityNotFoundError(step.entity, list(snapshot.entities))
        current = snapshot.entities[step.entity]

        if isinstance(step, AddField):
            updated = current.model_copy(update={"fields": (*current.fields, step.field)})
        elif isinstance(step, RemoveField):
            current.field(step.field.name)
            updated = current.model_copy(
                update={"fields": tuple(f for f in current.fields if f.name != step.field.name)}
            )
        elif isinstance(step, AlterField):
            current.field(step.old.name)
            fields = tuple(step.new if f.name == step.old.name else f for f in current.fields)
            updated = current.model_copy(update={"fields": fields})
        elif isinstance(step, AddRelationship):
            updated = current.model_copy(
                update={"relationships": (*current.relationships, step.relationship)}
            )
        elif isinstance(step, RemoveRelationship):
            if current.get_relationship(step.relationship.name) is None:
                raise SchemaError(
                    f"Relationship '{step.entity}.{step.relationship.name}' does not exist."
                )
            updated = current.model_copy(
                update={
                    "relationships": tuple(
                        r for r in current.relationships if r.name != step.relationship.name
                    )
                }
            )
        elif isinstance(step, AlterRelationship):
            if current.get_relationship(step.old.name) != step.old:
                raise SchemaError(
                    f"Relationship '{step.entity}.{step.old.name}' does not match the step."
                )
            relationships = tuple(
                step.new if r.name == step.old.name else r for r in current.relationships
            )
            updated = current.model_copy(update={"relationships": relationships})
        else:
            raise SchemaError(f"Unknown migration step: {step!r}")
        # Re-validate so duplicate names or a broken key surface here, not in SQL.
        entities = _replace_entity(snapshot, EntitySpec.model_validate(updated.model_dump()))

    return SchemaSnapshot(version=snapshot.version, entities=entities)


def apply_steps(
    snapshot: SchemaSnapshot, steps: Iterable[MigrationStep], version: int | None = None
) -> SchemaSnapshot:
    """Replay ``steps`` in order, optionally stamping the result with ``version``."""
    for step in steps:
        snapshot = apply_step(snapshot, step)
    return snapshot if version is None else snapshot.with_version(version)


def is_many(step: MigrationStep) -> bool:
    """Whether a relationship step concerns a many-to-many join entity."""
    return isinstance(step, (AddRelationship, RemoveRelationship)) and isinstance(
        step.relationship, ManyToMany
    )
