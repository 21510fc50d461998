"""Object persistence.

``ObjectStore`` loads, saves and deletes individual records as
``ObjectHandle`` instances and resolves their relationships lazily.
``AsyncObjectStore`` exposes the same operations to async callers; both run
the module-level functions below on a blocking ``Transaction``.

Handles are never cached across calls: every ``load`` and ``find`` reads the
database and returns fresh handles owned by the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import and_, delete, insert, select, update

from schemawright.backends.tables import SchemaTables
from schemawright.core.database import AsyncDatabase, AsyncTransaction, Database, Transaction
from schemawright.core.types import FieldType, ManyToMany, SchemaSnapshot
from schemawright.data.handle import HandleState, ObjectHandle
from schemawright.exceptions import (
    FieldNotFoundError,
    ObjectStateError,
    RecordNotFoundError,
)
from schemawright.query.compiler import QueryCompiler
from schemawright.query.expressions import F, Query, QueryPlan

if TYPE_CHECKING:
    from sqlalchemy import Table

logger = logging.getLogger(__name__)

T = TypeVar("T")


# === Operations on one transaction ===


def _load(
    tx: Transaction, schema: SchemaSnapshot, entity_name: str, pk: Any
) -> ObjectHandle | None:
    entity = schema.entity(entity_name)
    plan = Query(entity_name).where(F(entity.pk.name) == pk)
    row = tx.execute_query(plan, schema).first()
    if row is None:
        return None
    return ObjectHandle(entity, row, state=HandleState.PERSISTED)


def _insert(tx: Transaction, tables: SchemaTables, handle: ObjectHandle) -> None:
    entity = handle.entity
    pk = entity.pk
    values = handle.values()

    if values[pk.name] is None:
        if pk.auto and pk.type == FieldType.UUID:
            values[pk.name] = uuid.uuid4()
        elif pk.auto:
            del values[pk.name]
        else:
            raise ObjectStateError(
                f"Cannot insert {entity.name} without a value for primary key '{pk.name}'.",
                {"entity_name": entity.name, "field_name": pk.name},
            )

    # Unassigned defaulted fields are left to the column default
    defaulted = [
        f.name
        for f in entity.fields
        if f.default is not None and f.name not in handle.dirty and values.get(f.name) is None
    ]
    for name in defaulted:
        del values[name]

    result = tx.execute(insert(tables.table(entity.name)).values(values))
    if pk.name not in values:
        values[pk.name] = result.inserted_primary_key[0]
    logger.debug(f"Inserted {entity.name} {values[pk.name]!r}")

    if defaulted:
        stored = _load(tx, tables.snapshot, entity.name, values[pk.name])
        if stored is None:
            raise RecordNotFoundError(values[pk.name], entity.name)
        handle._mark_persisted(stored.values())
    else:
        handle._mark_persisted(values)


def _update(tx: Transaction, tables: SchemaTables, handle: ObjectHandle) -> None:
    entity = handle.entity
    table = tables.table(entity.name)
    key = table.c[entity.pk.name]
    values = {k: v for k, v in handle.values().items() if k != entity.pk.name}

    if values:
        count = tx.execute_write(update(table).where(key == handle.pk).values(values))
    else:
        count = len(tx.execute(select(key).where(key == handle.pk)).all())
    if count == 0:
        raise RecordNotFoundError(handle.pk, entity.name)
    handle._mark_persisted()


def _save(tx: Transaction, tables: SchemaTables, handle: ObjectHandle) -> None:
    handle.ensure_writable()
    if handle.state == HandleState.NEW:
        _insert(tx, tables, handle)
    else:
        _update(tx, tables, handle)


def _delete(tx: Transaction, tables: SchemaTables, handle: ObjectHandle) -> None:
    entity = handle.entity
    if handle.state != HandleState.PERSISTED:
        raise ObjectStateError(
            f"Only saved records can be deleted; this {entity.name} handle is {handle.state}.",
            {"entity_name": entity.name, "state": str(handle.state)},
        )
    table = tables.table(entity.name)
    count = tx.execute_write(delete(table).where(table.c[entity.pk.name] == handle.pk))
    if count == 0:
        raise RecordNotFoundError(handle.pk, entity.name)
    handle._mark_deleted()
    logger.debug(f"Deleted {entity.name} {handle.pk!r}")


def _find(tx: Transaction, schema: SchemaSnapshot, plan: QueryPlan) -> list[ObjectHandle]:
    entity = schema.entity(plan.entity)
    if plan.projections:
        plan = plan.select()
    return [
        ObjectHandle(entity, row, state=HandleState.PERSISTED)
        for row in tx.execute_query(plan, schema)
    ]


def _relationship(handle: ObjectHandle, name: str) -> Any:
    rel = handle.entity.get_relationship(name)
    if rel is None:
        raise FieldNotFoundError(
            name, handle.entity_name, [r.name for r in handle.entity.relationships]
        )
    return rel


def _related(
    tx: Transaction, schema: SchemaSnapshot, handle: ObjectHandle, name: str
) -> ObjectHandle | list[ObjectHandle] | None:
    rel = _relationship(handle, name)
    hit, cached = handle._cached(name)
    if hit:
        return cached

    target = schema.entity(rel.target)
    result: ObjectHandle | list[ObjectHandle] | None
    if isinstance(rel, ManyToMany):
        if handle.state != HandleState.PERSISTED:
            result = []
        else:
            compiled = QueryCompiler(tx.backend).compile_related(
                schema, handle.entity_name, name, handle.pk
            )
            result = [
                ObjectHandle(target, row, state=HandleState.PERSISTED)
                for row in tx.execute_compiled(compiled)
            ]
    else:
        key = handle[name]
        result = None if key is None else _load(tx, schema, rel.target, key)

    handle._cache(name, result)
    return result


def _link_table(
    tables: SchemaTables, handle: ObjectHandle, name: str, target: ObjectHandle
) -> tuple[Table, Any]:
    rel = _relationship(handle, name)
    if not isinstance(rel, ManyToMany):
        raise ObjectStateError(
            f"'{handle.entity_name}.{name}' is not a many-to-many relationship.",
            {"entity_name": handle.entity_name, "relationship_name": name},
        )
    if target.entity_name != rel.target:
        raise ObjectStateError(
            f"'{handle.entity_name}.{name}' links to {rel.target}, not {target.entity_name}.",
            {"relationship_name": name, "target": rel.target, "got": target.entity_name},
        )
    for h in (handle, target):
        if h.state != HandleState.PERSISTED:
            raise ObjectStateError(
                f"Save the {h.entity_name} record before linking it.",
                {"entity_name": h.entity_name, "state": str(h.state)},
            )
    link = tables.join_table(handle.entity_name, name)
    return link, and_(link.c.owner == handle.pk, link.c.has == target.pk)


def _link(
    tx: Transaction, tables: SchemaTables, handle: ObjectHandle, name: str, target: ObjectHandle
) -> bool:
    link, match = _link_table(tables, handle, name, target)
    handle._forget(name)
    if tx.execute(select(link.c.owner).where(match)).first() is not None:
        return False
    tx.execute(insert(link).values(owner=handle.pk, has=target.pk))
    return True


def _unlink(
    tx: Transaction, tables: SchemaTables, handle: ObjectHandle, name: str, target: ObjectHandle
) -> bool:
    link, match = _link_table(tables, handle, name, target)
    handle._forget(name)
    return tx.execute_write(delete(link).where(match)) > 0


# === Public stores ===


class ObjectStore:
    """Blocking record persistence for one schema.

    Example:
        store = ObjectStore(db, schema)
        post = store.new("Post", title="hello")
        store.save(post)
        for p in store.find(Query("Post").where(F("blog.name") == "news")):
            print(p.title, store.related(p, "tags"))
    """

    def __init__(self, bind: Database | Transaction, schema: SchemaSnapshot) -> None:
        """Initialize the store.

        Args:
            bind: A ``Database`` (one transaction per call) or an open
                ``Transaction`` (every call joins it)
            schema: The schema the database is migrated to
        """
        self.bind = bind
        self.schema = schema
        self._tables: SchemaTables | None = None

    @property
    def tables(self) -> SchemaTables:
        if self._tables is None:
            self._tables = SchemaTables(self.schema, self.bind.backend)
        return self._tables

    def _run(self, fn: Callable[..., T], *args: Any) -> T:
        if isinstance(self.bind, Transaction):
            return fn(self.bind, *args)
        with self.bind.transaction() as tx:
            return fn(tx, *args)

    def new(self, entity_name: str, **values: Any) -> ObjectHandle:
        """Construct an unsaved handle.

        Raises:
            EntityNotFoundError: If the schema has no such entity
            FieldNotFoundError: If a value names an unknown field
        """
        return ObjectHandle(self.schema.entity(entity_name), values)

    def load(self, entity_name: str, pk: Any) -> ObjectHandle | None:
        """Load one record by primary key, or None if it does not exist."""
        return self._run(_load, self.schema, entity_name, pk)

    def save(self, handle: ObjectHandle) -> None:
        """Insert a new handle or update every field of a persisted one.

        Raises:
            ObjectStateError: If the handle was deleted
            RecordNotFoundError: If a persisted handle's row no longer exists
            ConstraintViolationError: If the database rejects the write
        """
        self._run(_save, self.tables, handle)

    def delete(self, handle: ObjectHandle) -> None:
        """Delete a persisted handle's row. Nothing is cascaded.

        Raises:
            ForeignKeyViolationError: If other rows still reference the record
        """
        self._run(_delete, self.tables, handle)

    def find(self, plan: QueryPlan) -> list[ObjectHandle]:
        """Materialize handles for every row matching ``plan``.

        Projections are ignored; handles always carry all columns.
        """
        return self._run(_find, self.schema, plan)

    def related(
        self, handle: ObjectHandle, name: str
    ) -> ObjectHandle | list[ObjectHandle] | None:
        """Resolve a relationship, caching the result on the handle.

        Returns the referenced handle (or None) for a single reference and a
        list of handles for a many-to-many.
        """
        return self._run(_related, self.schema, handle, name)

    def link(self, handle: ObjectHandle, name: str, target: ObjectHandle) -> bool:
        """Add ``target`` to a many-to-many. Returns False if already linked."""
        return self._run(_link, self.tables, handle, name, target)

    def unlink(self, handle: ObjectHandle, name: str, target: ObjectHandle) -> bool:
        """Remove ``target`` from a many-to-many. Returns False if it was not linked."""
        return self._run(_unlink, self.tables, handle, name, target)


class AsyncObjectStore:
    """Suspending counterpart of ``ObjectStore``."""

    def __init__(self, bind: AsyncDatabase | AsyncTransaction, schema: SchemaSnapshot) -> None:
        self.bind = bind
        self.schema = schema
        self._tables: SchemaTables | None = None

    @property
    def tables(self) -> SchemaTables:
        if self._tables is None:
            self._tables = SchemaTables(self.schema, self.bind.backend)
        return self._tables

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        if isinstance(self.bind, AsyncTransaction):
            return await self.bind.run_sync(fn, *args)
        return await self.bind.run(fn, *args)

    def new(self, entity_name: str, **values: Any) -> ObjectHandle:
        return ObjectHandle(self.schema.entity(entity_name), values)

    async def load(self, entity_name: str, pk: Any) -> ObjectHandle | None:
        return await self._run(_load, self.schema, entity_name, pk)

    async def save(self, handle: ObjectHandle) -> None:
        await self._run(_save, self.tables, handle)

    async def delete(self, handle: ObjectHandle) -> None:
        await self._run(_delete, self.tables, handle)

    async def find(self, plan: QueryPlan) -> list[ObjectHandle]:
        return await self._run(_find, self.schema, plan)

    async def related(
        self, handle: ObjectHandle, name: str
    ) -> ObjectHandle | list[ObjectHandle] | None:
        return await self._run(_related, self.schema, handle, name)

    async def link(self, handle: ObjectHandle, name: str, target: ObjectHandle) -> bool:
        return await self._run(_link, self.tables, handle, name, target)

    async def unlink(self, handle: ObjectHandle, name: str, target: ObjectHandle) -> bool:
        return await self._run(_unlink, self.tables, handle, name, target)
