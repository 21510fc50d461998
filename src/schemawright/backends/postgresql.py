"""PostgreSQL backend.

PostgreSQL alters tables in place and runs DDL transactionally. Migrators are
serialized with a transaction-scoped advisory lock.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import psycopg

from schemawright.backends.base import Backend, quote_literal
from schemawright.backends.tables import unique_constraint_name
from schemawright.core.types import FieldType, SchemaSnapshot, SingleReference
from schemawright.schema.steps import (
    AddField,
    AddRelationship,
    AlterField,
    AlterRelationship,
    MigrationStep,
    RemoveField,
    RemoveRelationship,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect

# Advisory lock key shared by every migrator of a database
MIGRATION_LOCK_KEY = 7350211113

FOREIGN_KEY_VIOLATION = "23503"


class PostgresBackend(Backend):
    """Client/server engine."""

    name = "postgresql"

    @classmethod
    def default_dialect(cls) -> Dialect:
        return psycopg.dialect()

    def _render_bool(self, value: bool) -> str:
        return "true" if value else "false"

    def _render_json(self, document: str) -> str:
        return quote_literal(document) + "::jsonb"

    def convert_expression(self, column: str, old: FieldType, new: FieldType) -> str:
        if old == FieldType.BOOL and new == FieldType.BIGINT:
            # No direct boolean -> bigint cast
            return f"{column}::integer::bigint"
        return f"{column}::{self.type_sql(new)}"

    def _alter_entity(
        self, step: MigrationStep, before: SchemaSnapshot, after: SchemaSnapshot
    ) -> list[str]:
        table = self.quote(step.entity_name)

        if isinstance(step, AddField):
            statements = [f"ALTER TABLE {table} ADD COLUMN {self.column_sql(step.field)}"]
            if step.field.unique:
                statements.append(self._add_unique(step.entity, step.field.name))
            return statements

        if isinstance(step, RemoveField):
            return [f"ALTER TABLE {table} DROP COLUMN {self.quote(step.field.name)}"]

        if isinstance(step, AlterField):
            return self._alter_column(step)

        if isinstance(step, AddRelationship) and isinstance(step.relationship, SingleReference):
            rel = step.relationship
            target_pk = after.entity(rel.target).pk
            not_null = "" if rel.nullable else " NOT NULL"
            return [
                f"ALTER TABLE {table} ADD COLUMN {self.quote(rel.name)} "
                f"{self.type_sql(target_pk.type)}{not_null} "
                f"REFERENCES {self.quote(rel.target)} ({self.quote(target_pk.name)})"
            ]

        if isinstance(step, AlterRelationship):
            change = "DROP NOT NULL" if step.new.nullable else "SET NOT NULL"
            return [f"ALTER TABLE {table} ALTER COLUMN {self.quote(step.new.name)} {change}"]

        if isinstance(step, RemoveRelationship):
            return [f"ALTER TABLE {table} DROP COLUMN {self.quote(step.relationship.name)}"]

        raise NotImplementedError(f"No DDL for step {step!r}")

    def _alter_column(self, step: AlterField) -> list[str]:
        table = self.quote(step.entity)
        column = self.quote(step.field_name)
        prefix = f"ALTER TABLE {table} ALTER COLUMN {column}"
        old, new = step.old, step.new
        type_changed = old.type != new.type
        default_changed = type_changed or old.default != new.default
        new_default = self.render_default(new)

        statements = []
        if old.default is not None and default_changed:
            statements.append(f"{prefix} DROP DEFAULT")
        if type_changed:
            using = self.convert_expression(column, old.type, new.type)
            statements.append(f"{prefix} TYPE {self.type_sql(new.type)} USING {using}")
        if new_default is not None and default_changed:
            statements.append(f"{prefix} SET DEFAULT {new_default}")
        if old.nullable and not new.nullable:
            if new_default is not None:
                statements.append(
                    f"UPDATE {table} SET {column} = {new_default} WHERE {column} IS NULL"
                )
            statements.append(f"{prefix} SET NOT NULL")
        elif new.nullable and not old.nullable:
            statements.append(f"{prefix} DROP NOT NULL")

        if not new.primary_key and old.unique != new.unique:
            if new.unique:
                statements.append(self._add_unique(step.entity, step.field_name))
            else:
                constraint = self.quote(unique_constraint_name(step.entity, step.field_name))
                statements.insert(0, f"ALTER TABLE {table} DROP CONSTRAINT {constraint}")
        return statements

    def _add_unique(self, entity_name: str, field_name: str) -> str:
        constraint = self.quote(unique_constraint_name(entity_name, field_name))
        return (
            f"ALTER TABLE {self.quote(entity_name)} ADD CONSTRAINT {constraint} "
            f"UNIQUE ({self.quote(field_name)})"
        )

    def migration_lock_statements(self) -> list[str]:
        return [f"SELECT pg_advisory_xact_lock({MIGRATION_LOCK_KEY})"]

    def is_foreign_key_violation(self, exc: sa_exc.DBAPIError) -> bool:
        orig = exc.orig
        for candidate in (orig, getattr(orig, "__cause__", None)):
            code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
            if code == FOREIGN_KEY_VIOLATION:
                return True
        return "violates foreign key constraint" in str(orig)
