"""SQLAlchemy table construction from schema snapshots.

Builds one ``MetaData`` per snapshot holding a ``Table`` for every entity and
every implicit many-to-many join entity. Column order always follows
``EntitySpec.column_names`` so rows can be decoded positionally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import Column, ForeignKey, MetaData, Table, UniqueConstraint, text

from schemawright.core.types import (
    EntitySpec,
    FieldType,
    ManyToMany,
    SchemaSnapshot,
    join_entity_name,
)

if TYPE_CHECKING:
    from schemawright.backends.base import Backend

# Key types the database generates; UUID keys are generated client-side on insert
SERIAL_TYPES = frozenset({FieldType.INT, FieldType.BIGINT})


def unique_constraint_name(entity_name: str, field_name: str) -> str:
    """Name of the UNIQUE constraint on a field, stable across table rebuilds."""
    return f"uq_{entity_name}_{field_name}"


class SchemaTables:
    """Tables for every entity of a snapshot, rendered for one backend."""

    def __init__(self, snapshot: SchemaSnapshot, backend: Backend) -> None:
        """Build tables.

        Args:
            snapshot: Schema to build tables for
            backend: Backend providing column types and default rendering
        """
        self.snapshot = snapshot
        self.backend = backend
        self.metadata = MetaData()
        self.tables: dict[str, Table] = {}
        self.join_tables: dict[tuple[str, str], Table] = {}

        for entity in snapshot.entities.values():
            self.tables[entity.name] = self.build_entity_table(entity)
        for entity in snapshot.entities.values():
            for rel in entity.many:
                self.join_tables[(entity.name, rel.name)] = self._build_join_table(entity, rel)

    def table(self, entity_name: str) -> Table:
        """Table for an entity."""
        if entity_name not in self.tables:
            self.snapshot.entity(entity_name)  # raises EntityNotFoundError
        return self.tables[entity_name]

    def join_table(self, entity_name: str, relationship_name: str) -> Table:
        """Join table for a many-to-many relationship."""
        return self.join_tables[(entity_name, relationship_name)]

    def build_entity_table(
        self,
        entity: EntitySpec,
        name: str | None = None,
        snapshot: SchemaSnapshot | None = None,
    ) -> Table:
        """Build the table for ``entity``.

        Args:
            entity: Entity to build
            name: Table name override (used for SQLite table rebuilds)
            snapshot: Snapshot used to resolve reference targets (defaults to ours)
        """
        snapshot = snapshot or self.snapshot
        columns: list[Column[Any]] = []

        for field in entity.fields:
            default = self.backend.render_default(field)
            columns.append(
                Column(
                    field.name,
                    self.backend.column_type(field.type, auto=field.auto),
                    primary_key=field.primary_key,
                    nullable=field.nullable,
                    autoincrement=field.auto and field.type in SERIAL_TYPES,
                    server_default=text(default) if default is not None else None,
                )
            )

        for ref in entity.references:
            target_pk = snapshot.entity(ref.target).pk
            columns.append(
                Column(
                    ref.name,
                    self.backend.column_type(target_pk.type),
                    ForeignKey(f"{ref.target}.{target_pk.name}"),
                    nullable=ref.nullable,
                )
            )

        constraints = [
            UniqueConstraint(f.name, name=unique_constraint_name(entity.name, f.name))
            for f in entity.fields
            if f.unique and not f.primary_key
        ]
        return Table(name or entity.name, self.metadata, *columns, *constraints)

    def _build_join_table(self, entity: EntitySpec, rel: ManyToMany) -> Table:
        owner_pk = entity.pk
        target_pk = self.snapshot.entity(rel.target).pk
        return Table(
            join_entity_name(entity.name, rel.name),
            self.metadata,
            Column(
                "owner",
                self.backend.column_type(owner_pk.type),
                ForeignKey(f"{entity.name}.{owner_pk.name}"),
                primary_key=True,
                autoincrement=False,
            ),
            Column(
                "has",
                self.backend.column_type(target_pk.type),
                ForeignKey(f"{rel.target}.{target_pk.name}"),
                primary_key=True,
                autoincrement=False,
            ),
        )
