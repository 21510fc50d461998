"""Migration engine.

Applies migration batches to a database and records each one in the
append-only ``schemawright_migrations`` table. That table is the source of
truth for the database's schema: replaying every recorded step from an empty
schema yields the current snapshot.

Batches come from one of two sources:

- diff-derived: ``Migrator(desired=snapshot)`` diffs the replayed snapshot
  against the desired one and applies the result as a single new batch
- pre-supplied: ``Migrator(batches=load_batches("migrations.json"))`` applies
  a reviewed, fixed list; recorded history must be a prefix of it

Each batch runs in its own transaction holding the backend's migration lock.
A failing step rolls the whole batch back and stops the queue.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from sqlalchemy import inspect, insert, select
from sqlalchemy.exc import SQLAlchemyError

from schemawright.core.connection import translate_errors
from schemawright.core.types import SchemaSnapshot
from schemawright.exceptions import (
    MigrationApplyError,
    MigrationError,
    MigrationHistoryError,
    SchemaError,
    SchemawrightError,
)
from schemawright.schema.differ import diff
from schemawright.schema.models import HISTORY_TABLE, MigrationHistory, utc_now
from schemawright.schema.steps import MigrationStep, apply_step, apply_steps, invert_steps

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

    from schemawright.backends.base import Backend
    from schemawright.core.database import AsyncDatabase, Database, Transaction

logger = logging.getLogger(__name__)

history_table = MigrationHistory.__table__

_STEP_LIST: TypeAdapter[list[MigrationStep]] = TypeAdapter(list[MigrationStep])


class MigrationBatch(BaseModel):
    """An ordered group of steps applied in one transaction."""

    version: int = Field(..., ge=1, description="Schema version after this batch")
    name: str = Field(..., description="Name like 20240401_095709389_init")
    steps: tuple[MigrationStep, ...] = Field(default=(), description="Steps in apply order")

    model_config = ConfigDict(frozen=True)

    def invert(self) -> MigrationBatch:
        """The down migration: inverted steps in reverse order."""
        return MigrationBatch(
            version=self.version, name=f"{self.name}_down", steps=tuple(invert_steps(self.steps))
        )

    def describe(self) -> list[str]:
        return [step.describe() for step in self.steps]


_BATCH_LIST: TypeAdapter[list[MigrationBatch]] = TypeAdapter(list[MigrationBatch])


@dataclass(frozen=True)
class MigrationRecord:
    """One row of the migration history table."""

    version: int
    name: str
    steps: tuple[MigrationStep, ...]
    applied_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "name": self.name,
            "steps": [step.describe() for step in self.steps],
            "applied_at": self.applied_at.isoformat(),
        }


class MigrationState(StrEnum):
    """Migration state of one database."""

    UNINITIALIZED = "uninitialized"  # no history table yet
    BEHIND = "behind"
    UP_TO_DATE = "up_to_date"


@dataclass(frozen=True)
class MigrationStatus:
    state: MigrationState
    pending: int
    current_version: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": str(self.state),
            "pending": self.pending,
            "current_version": self.current_version,
        }


class _Versioned(Protocol):
    version: int
    steps: tuple[MigrationStep, ...]


def schema_at(history: Sequence[_Versioned]) -> SchemaSnapshot:
    """Snapshot produced by replaying recorded records or batches from an empty schema."""
    steps = [step for entry in history for step in entry.steps]
    version = history[-1].version if history else 0
    return apply_steps(SchemaSnapshot.empty(), steps, version=version)


def migration_name(label: str, now: datetime | None = None) -> str:
    """Batch name: UTC timestamp to the millisecond, then a label."""
    now = now or datetime.now(UTC)
    return f"{now:%Y%m%d_%H%M%S}{now.microsecond // 1000:03d}_{label}"


def make_batch(
    current: SchemaSnapshot,
    desired: SchemaSnapshot,
    label: str = "auto",
    version: int | None = None,
) -> MigrationBatch | None:
    """Diff two snapshots into a batch, or None when they already match.

    Raises:
        DiffError: If the difference cannot be migrated
    """
    steps = diff(current, desired)
    if not steps:
        return None
    return MigrationBatch(
        version=version if version is not None else current.version + 1,
        name=migration_name(label),
        steps=tuple(steps),
    )


def render_batch_sql(batch: MigrationBatch, backend: Backend, schema: SchemaSnapshot) -> list[str]:
    """DDL a backend would run for ``batch`` applied on top of ``schema``."""
    statements: list[str] = []
    for step in batch.steps:
        statements.extend(backend.ddl(step, schema))
        schema = apply_step(schema, step)
    return statements


# === Files ===


def save_batches(path: str | Path, batches: Iterable[MigrationBatch]) -> None:
    """Write batches to a JSON migrations file."""
    data = {"migrations": [batch.model_dump(mode="json") for batch in batches]}
    Path(path).write_text(json.dumps(data, indent=2) + "\n")


def load_batches(path: str | Path) -> list[MigrationBatch]:
    """Read batches from a JSON migrations file. A missing file holds no batches.

    Raises:
        MigrationError: If the file is not a valid migrations file
    """
    path = Path(path)
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text())
        return _BATCH_LIST.validate_python(data.get("migrations", []))
    except (json.JSONDecodeError, AttributeError, ValidationError) as e:
        raise MigrationError(
            f"Invalid migrations file {path}: {e}", {"path": str(path)}
        ) from e


def load_schema(path: str | Path) -> SchemaSnapshot:
    """Read a model description: ``{"entities": [...]}`` in JSON.

    Raises:
        SchemaError: If the file is missing, unreadable or describes an invalid schema
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise SchemaError(f"Cannot read model description {path}: {e}", {"path": str(path)}) from e
    entities = data.get("entities") if isinstance(data, dict) else data
    if not isinstance(entities, list):
        raise SchemaError(
            f"Model description {path} must contain an 'entities' list.", {"path": str(path)}
        )
    return SchemaSnapshot.build(entities)


# === History table ===


def history_exists(connection: Connection) -> bool:
    return inspect(connection).has_table(HISTORY_TABLE)


def read_history(connection: Connection) -> list[MigrationRecord]:
    """Recorded batches in version order. Empty when the table does not exist."""
    if not history_exists(connection):
        return []
    rows = connection.execute(select(history_table).order_by(history_table.c.version))
    return [
        MigrationRecord(
            version=row.version,
            name=row.name,
            steps=tuple(_STEP_LIST.validate_json(row.steps)),
            applied_at=row.applied_at,
        )
        for row in rows
    ]


class Migrator:
    """Brings databases up to a desired schema.

    Example:
        migrator = Migrator(desired=SchemaSnapshot.build([post]))
        migrator.apply_pending(Database("sqlite:///app.db"))
    """

    def __init__(
        self,
        desired: SchemaSnapshot | None = None,
        batches: Sequence[MigrationBatch] | None = None,
        label: str = "auto",
    ) -> None:
        """Initialize the migrator.

        Args:
            desired: Target schema (diff-derived mode)
            batches: Fixed batch list (pre-supplied mode)
            label: Name label for diff-derived batches

        Raises:
            MigrationError: Unless exactly one source is given, or if batch
                versions do not increase
        """
        if (desired is None) == (batches is None):
            raise MigrationError("Pass exactly one of 'desired' or 'batches'.")
        self.desired = desired
        self.batches = list(batches) if batches is not None else None
        self.label = label

        if self.batches is not None:
            versions = [b.version for b in self.batches]
            if any(b <= a for a, b in zip(versions, versions[1:], strict=False)):
                raise MigrationError(
                    "Migration batch versions must increase.", {"versions": versions}
                )

    def _pending(self, records: list[MigrationRecord]) -> list[MigrationBatch]:
        if self.batches is None:
            assert self.desired is not None
            current = schema_at(records)
            batch = make_batch(current, self.desired, self.label, current.version + 1)
            return [batch] if batch is not None else []

        if len(records) > len(self.batches):
            raise MigrationHistoryError(
                f"Database has {len(records)} recorded migrations but only "
                f"{len(self.batches)} were supplied.",
                {"recorded": [r.name for r in records]},
            )
        for record, batch in zip(records, self.batches, strict=False):
            if (record.version, record.name) != (batch.version, batch.name):
                raise MigrationHistoryError(
                    f"Recorded migration {record.version} ({record.name}) does not match "
                    f"supplied migration {batch.version} ({batch.name}).",
                    {"recorded": record.name, "supplied": batch.name, "version": record.version},
                )
        return self.batches[len(records) :]

    def _status(self, connection: Connection) -> MigrationStatus:
        initialized = history_exists(connection)
        records = read_history(connection)
        pending = len(self._pending(records))
        if not initialized:
            state = MigrationState.UNINITIALIZED
        elif pending:
            state = MigrationState.BEHIND
        else:
            state = MigrationState.UP_TO_DATE
        return MigrationStatus(state, pending, records[-1].version if records else 0)

    def _apply_next(self, tx: Transaction) -> MigrationRecord | None:
        """Apply the next pending batch inside a locked migration transaction."""
        with translate_errors(tx.backend):
            history_table.create(tx.connection, checkfirst=True)
            records = read_history(tx.connection)
        pending = self._pending(records)
        if not pending:
            return None

        batch = pending[0]
        schema = schema_at(records)
        logger.info(f"Applying migration {batch.version} ({batch.name}): {len(batch.steps)} steps")

        for index, step in enumerate(batch.steps):
            try:
                tx.execute_ddl(step, schema)
                schema = apply_step(schema, step)
            except (SchemawrightError, SQLAlchemyError) as e:
                logger.error(f"Migration {batch.version} failed at step {index}: {e}")
                raise MigrationApplyError(batch.version, index, e) from e

        try:
            tx.verify_migration()
        except SchemawrightError as e:
            logger.error(f"Migration {batch.version} failed its integrity check: {e}")
            raise MigrationApplyError(batch.version, len(batch.steps), e) from e

        record = MigrationRecord(batch.version, batch.name, batch.steps, utc_now())
        tx.execute(
            insert(history_table).values(
                version=record.version,
                name=record.name,
                steps=_STEP_LIST.dump_json(list(record.steps)).decode(),
                applied_at=record.applied_at,
            )
        )
        return record

    # === Blocking surface ===

    def status(self, db: Database) -> MigrationStatus:
        """Report the database's migration state without writing."""
        with db.connect() as connection, translate_errors(db.backend):
            return self._status(connection)

    def history(self, db: Database) -> list[MigrationRecord]:
        with db.connect() as connection, translate_errors(db.backend):
            return read_history(connection)

    def current_schema(self, db: Database) -> SchemaSnapshot:
        """Schema the database is in, replayed from its history."""
        return schema_at(self.history(db))

    def apply_pending(self, db: Database) -> list[MigrationRecord]:
        """Apply every pending batch, one transaction each.

        Returns:
            Records of the batches applied by this call (empty when up to date)

        Raises:
            MigrationApplyError: If a step fails; that batch is rolled back and
                no later batch is attempted
            MigrationHistoryError: If recorded history does not match supplied batches
        """
        if self.status(db).state == MigrationState.UP_TO_DATE:
            logger.debug("Database is up to date")
            return []

        applied: list[MigrationRecord] = []
        while True:
            with db.migration_transaction() as tx:
                record = self._apply_next(tx)
            if record is None:
                break
            logger.info(f"Migration {record.version} applied successfully")
            applied.append(record)
        return applied

    # === Suspending surface ===

    async def status_async(self, db: AsyncDatabase) -> MigrationStatus:
        async with db.connect() as connection:
            with translate_errors(db.backend):
                return await connection.run_sync(self._status)

    async def history_async(self, db: AsyncDatabase) -> list[MigrationRecord]:
        async with db.connect() as connection:
            with translate_errors(db.backend):
                return await connection.run_sync(read_history)

    async def current_schema_async(self, db: AsyncDatabase) -> SchemaSnapshot:
        return schema_at(await self.history_async(db))

    async def apply_pending_async(self, db: AsyncDatabase) -> list[MigrationRecord]:
        """Suspending counterpart of ``apply_pending``."""
        if (await self.status_async(db)).state == MigrationState.UP_TO_DATE:
            logger.debug("Database is up to date")
            return []

        applied: list[MigrationRecord] = []
        while True:
            async with db.migration_transaction() as tx:
                record = await tx.run_sync(self._apply_next)
            if record is None:
                break
            logger.info(f"Migration {record.version} applied successfully")
            applied.append(record)
        return applied
