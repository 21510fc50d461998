"""Schema differ.

Compares two snapshots and produces the ordered migration steps that turn the
first into the second. Renames are never inferred: a renamed field or entity
shows up as an unrelated remove + add pair.
"""

from __future__ import annotations

from graphlib import CycleError, TopologicalSorter

from schemawright.core.types import (
    EntitySpec,
    FieldType,
    ManyToMany,
    SchemaSnapshot,
    SingleReference,
)
from schemawright.exceptions import CyclicDependencyError, TypeChangeUnsupportedError
from schemawright.schema.steps import (
    AddField,
    AddRelationship,
    AlterField,
    AlterRelationship,
    CreateEntity,
    DropEntity,
    MigrationStep,
    RemoveField,
    RemoveRelationship,
)

# Logical type conversions every backend knows how to perform in place.
TYPE_CONVERSIONS: dict[FieldType, frozenset[FieldType]] = {
    FieldType.BOOL: frozenset({FieldType.INT, FieldType.BIGINT, FieldType.TEXT}),
    FieldType.INT: frozenset({FieldType.BIGINT, FieldType.REAL, FieldType.TEXT, FieldType.BOOL}),
    FieldType.BIGINT: frozenset({FieldType.INT, FieldType.REAL, FieldType.TEXT}),
    FieldType.REAL: frozenset({FieldType.INT, FieldType.BIGINT, FieldType.TEXT}),
    FieldType.TEXT: frozenset({FieldType.INT, FieldType.BIGINT, FieldType.REAL, FieldType.JSON}),
    FieldType.DATE: frozenset({FieldType.TIMESTAMP, FieldType.TEXT}),
    FieldType.TIMESTAMP: frozenset({FieldType.DATE, FieldType.TEXT}),
    FieldType.UUID: frozenset({FieldType.TEXT}),
    FieldType.JSON: frozenset({FieldType.TEXT}),
    FieldType.BLOB: frozenset(),
}


def can_convert(old: FieldType, new: FieldType) -> bool:
    """Whether a column can change from ``old`` to ``new`` keeping its data."""
    return old == new or new in TYPE_CONVERSIONS.get(old, frozenset())


def _dependency_order(entities: list[EntitySpec], declared: list[str]) -> list[EntitySpec]:
    """Order entities so every reference target comes before the referencing entity.

    Only references among ``entities`` count; self references are ignored.
    Ties are broken by position in ``declared``.
    """
    by_name = {e.name: e for e in entities}
    rank = {name: i for i, name in enumerate(declared)}
    sorter: TopologicalSorter[str] = TopologicalSorter()
    for entity in entities:
        targets = {
            r.target for r in entity.references if r.target in by_name and r.target != entity.name
        }
        sorter.add(entity.name, *sorted(targets, key=lambda n: rank.get(n, len(rank))))

    ordered: list[str] = []
    try:
        sorter.prepare()
    except CycleError as e:
        raise CyclicDependencyError(list(e.args[1])) from e
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=lambda n: rank.get(n, len(rank)))
        ordered.extend(ready)
        sorter.done(*ready)
    return [by_name[name] for name in ordered]


def _alters_in_place(
    old: SingleReference | ManyToMany | None, new: SingleReference | ManyToMany | None
) -> bool:
    """Whether a relationship change only flips the nullability of a reference column."""
    return (
        isinstance(old, SingleReference)
        and isinstance(new, SingleReference)
        and old.target == new.target
    )


def _diff_fields(current: EntitySpec, desired: EntitySpec) -> tuple[list, list, list]:
    removed: list[MigrationStep] = []
    added: list[MigrationStep] = []
    altered: list[MigrationStep] = []

    desired_names = {f.name for f in desired.fields}
    for old in current.fields:
        if old.name not in desired_names:
            removed.append(RemoveField(entity=current.name, field=old))

    for new in desired.fields:
        old = current.get_field(new.name)
        if old is None:
            added.append(AddField(entity=current.name, field=new))
        elif old != new:
            if (
                old.primary_key != new.primary_key
                or old.auto != new.auto
                or (new.primary_key and old.type != new.type)
            ):
                raise TypeChangeUnsupportedError(
                    current.name,
                    new.name,
                    f"primary_key={old.primary_key}, auto={old.auto}",
                    f"primary_key={new.primary_key}, auto={new.auto}",
                )
            if not can_convert(old.type, new.type):
                raise TypeChangeUnsupportedError(current.name, new.name, old.type, new.type)
            altered.append(AlterField(entity=current.name, old=old, new=new))
    return removed, added, altered


def diff(current: SchemaSnapshot, desired: SchemaSnapshot) -> list[MigrationStep]:
    """Compute the steps that migrate ``current`` to ``desired``.

    Order: relationship removals, field removals, entity drops (dependents
    first), entity creations (targets first), field additions/alterations,
    single-reference alterations and additions, many-to-many additions.

    A single reference that keeps its name and target is altered in place, so
    its stored keys survive; any other relationship change is remove + add.

    Raises:
        CyclicDependencyError: If new or dropped entities reference each other in a cycle
        TypeChangeUnsupportedError: If a field change has no defined migration
    """
    created = [e for name, e in desired.entities.items() if name not in current.entities]
    dropped = [e for name, e in current.entities.items() if name not in desired.entities]
    kept = [name for name in desired.entities if name in current.entities]

    remove_many: list[MigrationStep] = []
    remove_refs: list[MigrationStep] = []
    remove_fields: list[MigrationStep] = []
    add_fields: list[MigrationStep] = []
    alter_fields: list[MigrationStep] = []
    alter_refs: list[MigrationStep] = []
    add_refs: list[MigrationStep] = []
    add_many: list[MigrationStep] = []

    for entity in dropped:
        for rel in entity.many:
            remove_many.append(RemoveRelationship(entity=entity.name, relationship=rel))

    for name in kept:
        old_entity = current.entities[name]
        new_entity = desired.entities[name]

        removed, added, altered = _diff_fields(old_entity, new_entity)
        remove_fields.extend(removed)
        add_fields.extend(added)
        alter_fields.extend(altered)

        for rel in old_entity.relationships:
            desired_rel = new_entity.get_relationship(rel.name)
            if desired_rel == rel:
                continue
            if _alters_in_place(rel, desired_rel):
                alter_refs.append(AlterRelationship(entity=name, old=rel, new=desired_rel))
            else:
                bucket = remove_many if rel.kind == "many_to_many" else remove_refs
                bucket.append(RemoveRelationship(entity=name, relationship=rel))
        for rel in new_entity.relationships:
            current_rel = old_entity.get_relationship(rel.name)
            if current_rel != rel and not _alters_in_place(current_rel, rel):
                bucket = add_many if rel.kind == "many_to_many" else add_refs
                bucket.append(AddRelationship(entity=name, relationship=rel))

    for entity in created:
        for rel in entity.many:
            add_many.append(AddRelationship(entity=entity.name, relationship=rel))

    drop_order = list(reversed(_dependency_order(dropped, list(current.entities))))
    create_order = _dependency_order(created, list(desired.entities))

    return [
        *remove_many,
        *remove_refs,
        *remove_fields,
        *(DropEntity(entity=e.without_many()) for e in drop_order),
        *(CreateEntity(entity=e.without_many()) for e in create_order),
        *add_fields,
        *alter_fields,
        *alter_refs,
        *add_refs,
        *add_many,
    ]
