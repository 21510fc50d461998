"""Database handles.

``Database`` is the blocking surface, ``AsyncDatabase`` the suspending one.
Both hand out scoped transactions that commit when the block exits normally
and roll back on every other exit path, including cancellation.

The statement-level logic lives once, in ``Transaction``, on a SQLAlchemy
``Connection``. ``AsyncTransaction`` runs the same code through
``AsyncConnection.run_sync``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import Engine

from schemawright.backends import Backend, get_backend
from schemawright.core.config import BackendConfig
from schemawright.core.connection import (
    acquiring,
    create_async_db_engine,
    create_sync_engine,
    translate_errors,
)
from schemawright.query.compiler import CompiledStatement, QueryCompiler, RowDecoder

if TYPE_CHECKING:
    from sqlalchemy import CursorResult, Executable
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

    from schemawright.core.types import SchemaSnapshot
    from schemawright.query.expressions import QueryPlan
    from schemawright.schema.steps import MigrationStep

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _resolve_config(config: BackendConfig | str, options: dict[str, Any]) -> BackendConfig:
    if isinstance(config, BackendConfig):
        return config
    return BackendConfig.from_url(config, **options)


class RowStream:
    """Decoded rows of one query.

    Rows are read lazily from the open cursor, so a stream must be consumed
    before its transaction ends.
    """

    def __init__(self, result: CursorResult[Any], decoder: RowDecoder) -> None:
        self._result = result
        self.decoder = decoder

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for row in self._result:
            yield self.decoder.decode(row)

    def all(self) -> list[dict[str, Any]]:
        return list(self)

    def first(self) -> dict[str, Any] | None:
        row = self._result.first()
        return None if row is None else self.decoder.decode(row)

    def close(self) -> None:
        self._result.close()


class Transaction:
    """One open transaction on one connection."""

    def __init__(self, connection: Connection, backend: Backend) -> None:
        self._connection = connection
        self.backend = backend

    @property
    def connection(self) -> Connection:
        """The underlying SQLAlchemy connection."""
        return self._connection

    def execute_ddl(self, step: MigrationStep, schema: SchemaSnapshot) -> list[str]:
        """Execute the DDL for one migration step.

        Args:
            step: Step to execute
            schema: Snapshot the step applies to

        Returns:
            The statements that were executed

        Raises:
            BackendError: If the database rejects a statement
        """
        statements = self.backend.ddl(step, schema)
        for sql in statements:
            logger.debug(f"DDL ({step.describe()}): {sql}")
            self.execute_sql(sql)
        return statements

    def execute_sql(self, sql: str) -> None:
        """Execute one literal statement with no bound parameters."""
        with translate_errors(self.backend):
            self._connection.exec_driver_sql(sql, execution_options={"no_parameters": True})

    def execute_query(self, plan: QueryPlan, schema: SchemaSnapshot) -> RowStream:
        """Compile and run a query plan.

        Raises:
            CompileError: If the plan does not compile against ``schema``
            BackendError: If the database rejects the statement
        """
        compiled = QueryCompiler(self.backend).compile(plan, schema)
        return self.execute_compiled(compiled)

    def execute_compiled(self, compiled: CompiledStatement) -> RowStream:
        """Run an already compiled statement."""
        logger.debug(f"Query: {compiled.sql} {compiled.params}")
        with translate_errors(self.backend):
            result = self._connection.execute(compiled.statement)
        return RowStream(result, compiled.decoder)

    def execute(self, statement: Executable) -> CursorResult[Any]:
        """Execute a SQLAlchemy statement and return its raw result."""
        with translate_errors(self.backend):
            return self._connection.execute(statement)

    def execute_write(self, statement: Executable) -> int:
        """Execute an INSERT, UPDATE or DELETE.

        Returns:
            Number of affected rows
        """
        return self.execute(statement).rowcount

    def verify_migration(self) -> None:
        """Run the backend's pre-commit integrity checks."""
        with translate_errors(self.backend):
            self.backend.verify_migration(self._connection)


class Database:
    """Blocking access to one managed database.

    Example:
        db = Database("sqlite:///app.db")
        with db.transaction() as tx:
            tx.execute_write(insert(table).values(...))
    """

    def __init__(self, config: BackendConfig | str, **options: Any) -> None:
        """Initialize the handle. The engine is created lazily.

        Args:
            config: Backend configuration or database URL
            **options: Extra configuration options when ``config`` is a URL

        Raises:
            ConfigError: If the configuration is invalid
        """
        self.config = _resolve_config(config, options)
        self.backend = get_backend(self.config.backend)
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        """Get or create the SQLAlchemy engine."""
        if self._engine is None:
            self._engine = create_sync_engine(self.config, self.backend)
        return self._engine

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Check a connection out of the pool, blocking until one is free.

        Raises:
            AcquireTimeoutError: If none is released within ``pool_acquire_timeout``
            ConnectionError: If the database cannot be reached
        """
        with acquiring(self.config, self.backend):
            connection = self.engine.connect()
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Open a transaction, committed on normal exit and rolled back otherwise."""
        with self.connect() as connection:
            with translate_errors(self.backend), connection.begin():
                yield Transaction(connection, self.backend)

    @contextmanager
    def migration_transaction(self) -> Iterator[Transaction]:
        """Open a transaction holding the backend's migration lock."""
        with self.connect() as connection:
            with translate_errors(self.backend):
                self.backend.prepare_migration_connection(connection)
            try:
                with translate_errors(self.backend), connection.begin():
                    tx = Transaction(connection, self.backend)
                    for sql in self.backend.migration_lock_statements():
                        tx.execute_sql(sql)
                    yield tx
            finally:
                if not connection.invalidated:
                    with translate_errors(self.backend):
                        self.backend.release_migration_connection(connection)

    def run(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` inside one transaction and return its result."""
        with self.transaction() as tx:
            return fn(tx)

    def test_connection(self) -> bool:
        """Check that the database is reachable.

        Raises:
            ConnectionError: If the connection test fails
        """
        with self.connect() as connection, translate_errors(self.backend):
            connection.exec_driver_sql("SELECT 1")
        return True

    def close(self) -> None:
        """Dispose of the engine and its pool."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()


class AsyncTransaction:
    """Suspending counterpart of ``Transaction``."""

    def __init__(self, connection: AsyncConnection, backend: Backend) -> None:
        self._connection = connection
        self.backend = backend

    @property
    def connection(self) -> AsyncConnection:
        return self._connection

    async def run_sync(self, fn: Callable[..., T], *args: Any) -> T:
        """Run ``fn(transaction, *args)`` with a blocking ``Transaction`` on this connection."""

        def call(connection: Connection) -> T:
            return fn(Transaction(connection, self.backend), *args)

        return await self._connection.run_sync(call)

    async def execute_ddl(self, step: MigrationStep, schema: SchemaSnapshot) -> list[str]:
        return await self.run_sync(lambda tx: tx.execute_ddl(step, schema))

    async def execute_query(self, plan: QueryPlan, schema: SchemaSnapshot) -> list[dict[str, Any]]:
        """Compile and run a query plan, returning every decoded row."""
        return await self.run_sync(lambda tx: tx.execute_query(plan, schema).all())

    async def execute_write(self, statement: Executable) -> int:
        return await self.run_sync(lambda tx: tx.execute_write(statement))


class AsyncDatabase:
    """Suspending access to one managed database.

    Example:
        db = AsyncDatabase("sqlite:///app.db")
        async with db.transaction() as tx:
            rows = await tx.execute_query(Query("Post").plan(), schema)
    """

    def __init__(self, config: BackendConfig | str, **options: Any) -> None:
        self.config = _resolve_config(config, options)
        self.backend = get_backend(self.config.backend)
        self._engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the SQLAlchemy async engine."""
        if self._engine is None:
            self._engine = create_async_db_engine(self.config, self.backend)
        return self._engine

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """Check a connection out of the pool, suspending until one is free.

        Raises:
            AcquireTimeoutError: If none is released within ``pool_acquire_timeout``
            ConnectionError: If the database cannot be reached
        """
        with acquiring(self.config, self.backend):
            connection = await self.engine.connect()
        try:
            yield connection
        finally:
            await connection.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncTransaction]:
        """Open a transaction, committed on normal exit and rolled back otherwise."""
        async with self.connect() as connection:
            with translate_errors(self.backend):
                async with connection.begin():
                    yield AsyncTransaction(connection, self.backend)

    @asynccontextmanager
    async def migration_transaction(self) -> AsyncIterator[AsyncTransaction]:
        """Open a transaction holding the backend's migration lock."""
        async with self.connect() as connection:
            with translate_errors(self.backend):
                await connection.run_sync(self.backend.prepare_migration_connection)
            try:
                with translate_errors(self.backend):
                    async with connection.begin():
                        tx = AsyncTransaction(connection, self.backend)
                        for sql in self.backend.migration_lock_statements():
                            await tx.run_sync(Transaction.execute_sql, sql)
                        yield tx
            finally:
                if not connection.invalidated:
                    with translate_errors(self.backend):
                        await connection.run_sync(self.backend.release_migration_connection)

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run blocking ``fn(transaction, *args)`` inside one suspending transaction."""
        async with self.transaction() as tx:
            return await tx.run_sync(fn, *args)

    async def test_connection(self) -> bool:
        async with self.connect() as connection, connection.begin():
            with translate_errors(self.backend):
                await connection.exec_driver_sql("SELECT 1")
        return True

    async def close(self) -> None:
        """Dispose of the engine and its pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def __aenter__(self) -> AsyncDatabase:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()
