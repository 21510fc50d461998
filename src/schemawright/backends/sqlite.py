"""SQLite backend.

SQLite cannot change a column's type, drop a column carrying a foreign key, or
add a constrained reference column in place, so those steps rebuild the table:
create a replacement, copy rows across (converting where needed), drop the old
table and rename the replacement. Foreign-key enforcement is switched off for
the migration connection and checked with ``PRAGMA foreign_key_check`` before
commit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import Integer, event
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects import sqlite

from schemawright.backends.base import Backend, quote_literal
from schemawright.backends.tables import SchemaTables
from schemawright.core.types import FieldType, SchemaSnapshot, SingleReference
from schemawright.exceptions import ForeignKeyViolationError
from schemawright.schema.steps import AddField, AddRelationship, AlterField, MigrationStep

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Dialect, Engine
    from sqlalchemy.types import TypeEngine

    from schemawright.core.config import BackendConfig

# Prefix for the replacement table during a rebuild
REBUILD_PREFIX = "_sw_new_"

# Seconds a connection waits on a locked database file before failing
BUSY_TIMEOUT = 30.0

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1


def _guarded(column: str, valid: str, converted: str) -> str:
    """Conversion that aborts the statement on a value it cannot convert.

    SQLite has no RAISE outside triggers; json() of the rejected text fails with
    "malformed JSON" instead, which rolls the migration back.
    """
    return (
        f"CASE WHEN {column} IS NULL THEN NULL WHEN {valid} THEN {converted} "
        f"ELSE json('cannot convert ' || {column}) END"
    )


def _raw_execute(connection: Connection, sql: str) -> None:
    """Run a statement on the DBAPI connection, outside any SQLAlchemy transaction.

    PRAGMA foreign_keys is a no-op inside a transaction, so it has to bypass
    the begin hook.
    """
    cursor = connection.connection.dbapi_connection.cursor()  # type: ignore[union-attr]
    try:
        cursor.execute(sql)
    finally:
        cursor.close()


class SqliteBackend(Backend):
    """Embedded single-file engine."""

    name = "sqlite"

    @classmethod
    def default_dialect(cls) -> Dialect:
        return sqlite.dialect()

    def column_type(self, field_type: FieldType, auto: bool = False) -> TypeEngine[Any]:
        # Only INTEGER PRIMARY KEY aliases the rowid and autoincrements.
        if auto and field_type == FieldType.BIGINT:
            return Integer()
        return super().column_type(field_type, auto)

    def _render_bool(self, value: bool) -> str:
        return "1" if value else "0"

    def _render_json(self, document: str) -> str:
        return quote_literal(document)

    def convert_expression(self, column: str, old: FieldType, new: FieldType) -> str:
        if new == FieldType.BOOL:
            return f"({column} != 0)"
        if new in (FieldType.INT, FieldType.BIGINT):
            return self._to_integer(column, old, new)
        if new == FieldType.REAL:
            if old == FieldType.TEXT:
                text = f"trim({column})"
                kind = f"(CASE WHEN json_valid({text}) THEN json_type({text}) END)"
                return _guarded(column, f"{kind} IN ('integer', 'real')", f"CAST({text} AS REAL)")
            return f"CAST({column} AS REAL)"
        if new == FieldType.JSON:
            return f"json({column})"
        if new == FieldType.DATE:
            return f"substr({column}, 1, 10)"
        if new == FieldType.TIMESTAMP:
            return f"{column} || ' 00:00:00.000000'"
        if old == FieldType.BOOL:
            return (
                f"CASE WHEN {column} IS NULL THEN NULL "
                f"WHEN {column} THEN 'true' ELSE 'false' END"
            )
        if old == FieldType.UUID:
            # Stored as 32 hex digits; render the hyphenated form
            return (
                f"lower(substr({column}, 1, 8) || '-' || substr({column}, 9, 4) || '-' || "
                f"substr({column}, 13, 4) || '-' || substr({column}, 17, 4) || '-' || "
                f"substr({column}, 21))"
            )
        return f"CAST({column} AS TEXT)"

    def _to_integer(self, column: str, old: FieldType, new: FieldType) -> str:
        """Integer conversion that rejects non-numeric text and 32-bit overflow."""
        valid: str | None = None
        if old == FieldType.TEXT:
            text = f"trim({column})"
            digits = (
                f"(CASE WHEN substr({text}, 1, 1) IN ('+', '-') "
                f"THEN substr({text}, 2) ELSE {text} END)"
            )
            valid = f"{digits} <> '' AND {digits} NOT GLOB '*[^0-9]*'"
            converted = f"CAST({text} AS INTEGER)"
        elif old == FieldType.REAL:
            # Round like PostgreSQL instead of truncating
            converted = f"CAST(round({column}) AS INTEGER)"
        else:
            converted = f"CAST({column} AS INTEGER)"

        if new == FieldType.INT and old != FieldType.BOOL:
            in_range = f"{converted} BETWEEN {INT32_MIN} AND {INT32_MAX}"
            valid = in_range if valid is None else f"{valid} AND {in_range}"
        return converted if valid is None else _guarded(column, valid, converted)

    def _alter_entity(
        self, step: MigrationStep, before: SchemaSnapshot, after: SchemaSnapshot
    ) -> list[str]:
        table = self.quote(step.entity_name)

        if isinstance(step, AddField):
            in_place = step.field.nullable or step.field.default is not None
            if in_place and not step.field.unique:
                return [f"ALTER TABLE {table} ADD COLUMN {self.column_sql(step.field)}"]
            return self._rebuild(before, after, step.entity)

        if isinstance(step, AddRelationship) and isinstance(step.relationship, SingleReference):
            rel = step.relationship
            if rel.nullable:
                target_pk = after.entity(rel.target).pk
                return [
                    f"ALTER TABLE {table} ADD COLUMN {self.quote(rel.name)} "
                    f"{self.type_sql(target_pk.type)} "
                    f"REFERENCES {self.quote(rel.target)} ({self.quote(target_pk.name)})"
                ]
            return self._rebuild(before, after, step.entity)

        if isinstance(step, AlterField):
            column = self.quote(step.field_name)
            expression = column
            if step.old.type != step.new.type:
                expression = self.convert_expression(column, step.old.type, step.new.type)
            default = self.render_default(step.new)
            if default is not None and not step.new.nullable:
                expression = f"COALESCE({expression}, {default})"
            return self._rebuild(before, after, step.entity, {step.field_name: expression})

        return self._rebuild(before, after, step.entity_name)

    def _rebuild(
        self,
        before: SchemaSnapshot,
        after: SchemaSnapshot,
        entity_name: str,
        conversions: dict[str, str] | None = None,
    ) -> list[str]:
        """Create-copy-drop-rename procedure for one table."""
        conversions = conversions or {}
        tables = SchemaTables(before, self)
        new_entity = after.entity(entity_name)
        temp_name = f"{REBUILD_PREFIX}{entity_name}"
        temp = tables.build_entity_table(new_entity, name=temp_name, snapshot=after)

        old_columns = set(before.entity(entity_name).column_names)
        copied = [c for c in new_entity.column_names if c in old_columns]
        table = self.quote(entity_name)

        statements = [self.create_table_sql(temp)]
        if copied:
            columns = ", ".join(self.quote(c) for c in copied)
            expressions = ", ".join(conversions.get(c, self.quote(c)) for c in copied)
            statements.append(
                f"INSERT INTO {self.quote(temp_name)} ({columns}) "
                f"SELECT {expressions} FROM {table}"
            )
        statements.append(f"DROP TABLE {table}")
        statements.append(f"ALTER TABLE {self.quote(temp_name)} RENAME TO {table}")
        return statements

    def configure_engine(self, engine: Engine, config: BackendConfig) -> None:
        use_wal = not config.is_memory

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            # Let the begin hook below emit BEGIN itself
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA foreign_keys = ON")
                if use_wal:
                    cursor.execute("PRAGMA journal_mode = WAL")
            finally:
                cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn: Connection) -> None:
            mode = conn.get_execution_options().get("sqlite_begin")
            conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")

    def prepare_migration_connection(self, connection: Connection) -> None:
        # BEGIN IMMEDIATE takes the write lock up front, serializing migrators
        connection.execution_options(sqlite_begin="IMMEDIATE")
        _raw_execute(connection, "PRAGMA foreign_keys = OFF")

    def release_migration_connection(self, connection: Connection) -> None:
        connection.execution_options(sqlite_begin=None)
        _raw_execute(connection, "PRAGMA foreign_keys = ON")

    def verify_migration(self, connection: Connection) -> None:
        rows = connection.exec_driver_sql("PRAGMA foreign_key_check").fetchall()
        if rows:
            raise ForeignKeyViolationError(
                f"Migration leaves {len(rows)} dangling reference(s), "
                f"first in table '{rows[0][0]}'",
                self.name,
                {"violations": [list(row) for row in rows[:10]]},
            )

    def is_foreign_key_violation(self, exc: sa_exc.DBAPIError) -> bool:
        return "FOREIGN KEY constraint failed" in str(exc.orig)
