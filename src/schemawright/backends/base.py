"""Backend adapter interface.

A backend turns backend-neutral migration steps into exact DDL for one SQL
dialect, maps logical field types onto SQLAlchemy column types, and translates
driver errors into Schemawright exceptions. The set of backends is closed:
``SqliteBackend`` and ``PostgresBackend``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    Table,
    Text,
    Uuid,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.schema import CreateTable

from schemawright.backends.tables import SchemaTables
from schemawright.core.types import FieldSpec, FieldType, SchemaSnapshot, join_entity_name
from schemawright.exceptions import (
    BackendError,
    ConstraintViolationError,
    ForeignKeyViolationError,
    SchemawrightError,
)
from schemawright.schema.steps import (
    AddRelationship,
    CreateEntity,
    DropEntity,
    MigrationStep,
    apply_step,
    is_many,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Dialect, Engine
    from sqlalchemy.types import TypeEngine

    from schemawright.core.config import BackendConfig


# Mapping from logical field types to SQLAlchemy column types
FIELD_TYPE_MAP: dict[FieldType, Callable[[], TypeEngine[Any]]] = {
    FieldType.BOOL: lambda: Boolean(),
    FieldType.INT: lambda: Integer(),
    FieldType.BIGINT: lambda: BigInteger(),
    FieldType.REAL: lambda: Float(),
    FieldType.TEXT: lambda: Text(),
    FieldType.DATE: lambda: Date(),
    FieldType.TIMESTAMP: lambda: DateTime(),
    FieldType.BLOB: lambda: LargeBinary(),
    FieldType.UUID: lambda: Uuid(),
    FieldType.JSON: lambda: JSON().with_variant(JSONB(), "postgresql"),
}


def quote_literal(value: str) -> str:
    """Render a string as a single-quoted SQL literal."""
    return "'" + value.replace("'", "''") + "'"


class Backend(ABC):
    """One SQL dialect behind the adapter interface."""

    name: ClassVar[str]

    def __init__(self, dialect: Dialect | None = None) -> None:
        """Initialize the backend.

        Args:
            dialect: SQLAlchemy dialect to render for. Defaults to the backend's
                sync driver dialect; rendering does not depend on the driver.
        """
        self.dialect = dialect or self.default_dialect()

    @classmethod
    @abstractmethod
    def default_dialect(cls) -> Dialect:
        """Dialect used when none is supplied."""

    # === Types ===

    def column_type(self, field_type: FieldType, auto: bool = False) -> TypeEngine[Any]:
        """SQLAlchemy type for a logical field type."""
        return FIELD_TYPE_MAP[field_type]()

    def type_sql(self, field_type: FieldType) -> str:
        """DDL type name for a logical field type."""
        return self.column_type(field_type).compile(dialect=self.dialect)

    def render_default(self, field: FieldSpec) -> str | None:
        """SQL literal for a field's default, or None when it has none."""
        value = field.default
        if value is None:
            return None
        if field.type == FieldType.BOOL:
            return self._render_bool(bool(value))
        if field.type == FieldType.JSON:
            return self._render_json(json.dumps(value, sort_keys=True))
        if field.type == FieldType.TEXT:
            return quote_literal(value)
        if field.type == FieldType.REAL:
            return repr(float(value))
        return str(int(value))

    @abstractmethod
    def _render_bool(self, value: bool) -> str: ...

    @abstractmethod
    def _render_json(self, document: str) -> str: ...

    @abstractmethod
    def convert_expression(self, column: str, old: FieldType, new: FieldType) -> str:
        """SQL expression converting quoted ``column`` from ``old`` to ``new``."""

    # === DDL ===

    def quote(self, name: str) -> str:
        """Quote an identifier for this dialect."""
        return self.dialect.identifier_preparer.quote(name)

    def create_table_sql(self, table: Table) -> str:
        return str(CreateTable(table).compile(dialect=self.dialect)).strip()

    def column_sql(self, field: FieldSpec) -> str:
        """Column definition used by ADD COLUMN."""
        sql = f"{self.quote(field.name)} {self.type_sql(field.type)}"
        default = self.render_default(field)
        if default is not None:
            sql += f" DEFAULT {default}"
        if not field.nullable:
            sql += " NOT NULL"
        return sql

    def ddl(self, step: MigrationStep, schema: SchemaSnapshot) -> list[str]:
        """Exact DDL statements for one step.

        Args:
            step: Step to render
            schema: Snapshot the step applies to (the state before it)

        Returns:
            Statements to execute in order
        """
        after = apply_step(schema, step)

        if isinstance(step, CreateEntity):
            tables = SchemaTables(after, self)
            statements = [self.create_table_sql(tables.table(step.entity.name))]
            for rel in step.entity.many:
                statements.append(
                    self.create_table_sql(tables.join_table(step.entity.name, rel.name))
                )
            return statements

        if isinstance(step, DropEntity):
            statements = [
                f"DROP TABLE {self.quote(join_entity_name(step.entity.name, rel.name))}"
                for rel in step.entity.many
            ]
            statements.append(f"DROP TABLE {self.quote(step.entity.name)}")
            return statements

        if is_many(step):
            rel = step.relationship  # type: ignore[union-attr]
            if isinstance(step, AddRelationship):
                tables = SchemaTables(after, self)
                return [self.create_table_sql(tables.join_table(step.entity, rel.name))]
            return [f"DROP TABLE {self.quote(join_entity_name(step.entity, rel.name))}"]

        return self._alter_entity(step, schema, after)

    @abstractmethod
    def _alter_entity(
        self, step: MigrationStep, before: SchemaSnapshot, after: SchemaSnapshot
    ) -> list[str]:
        """DDL for field steps and single-reference steps on an existing entity."""

    # === Engine and migration hooks ===

    def configure_engine(self, engine: Engine, config: BackendConfig) -> None:
        """Install per-connection event hooks on a sync engine (or ``AsyncEngine.sync_engine``)."""
        return None

    def prepare_migration_connection(self, connection: Connection) -> None:
        """Adjust a connection before its migration transaction begins."""
        return None

    def release_migration_connection(self, connection: Connection) -> None:
        """Undo ``prepare_migration_connection`` before the connection returns to the pool."""
        return None

    def migration_lock_statements(self) -> list[str]:
        """Statements run first inside a migration transaction to serialize migrators."""
        return []

    def verify_migration(self, connection: Connection) -> None:
        """Integrity checks run inside a migration transaction before commit."""
        return None

    # === Errors ===

    @abstractmethod
    def is_foreign_key_violation(self, exc: sa_exc.DBAPIError) -> bool: ...

    def translate_error(self, exc: sa_exc.DBAPIError) -> SchemawrightError:
        """Translate a driver error into a Schemawright exception.

        The driver's message is kept verbatim; the backend name and the failing
        statement are attached as context.
        """
        message = str(exc.orig) if exc.orig is not None else str(exc)
        context = {"statement": exc.statement}
        if isinstance(exc, sa_exc.IntegrityError):
            if self.is_foreign_key_violation(exc):
                return ForeignKeyViolationError(message, self.name, context)
            return ConstraintViolationError(message, self.name, context)
        return BackendError(message, self.name, context)
