"""Engine construction and driver-error translation.

Both engines use a bounded pool: ``pool_max_size`` connections, no overflow,
and ``pool_acquire_timeout`` seconds of waiting before ``AcquireTimeoutError``.
A private ``:memory:`` SQLite database lives on a single shared connection.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, create_engine
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, QueuePool, StaticPool

from schemawright.backends.sqlite import BUSY_TIMEOUT
from schemawright.core.config import BackendConfig, BackendKind
from schemawright.exceptions import AcquireTimeoutError, ConnectionError

if TYPE_CHECKING:
    from schemawright.backends.base import Backend


def _engine_options(config: BackendConfig, use_async: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": config.echo}
    connect_args: dict[str, Any] = {}

    if config.backend == BackendKind.SQLITE:
        connect_args["timeout"] = BUSY_TIMEOUT
        if not use_async:
            connect_args["check_same_thread"] = False

    if config.is_memory:
        options["poolclass"] = StaticPool
    else:
        options["poolclass"] = AsyncAdaptedQueuePool if use_async else QueuePool
        options["pool_size"] = config.pool_max_size
        options["max_overflow"] = 0
        options["pool_timeout"] = config.pool_acquire_timeout
        if config.backend == BackendKind.POSTGRESQL:
            options["pool_pre_ping"] = True  # Verify connections before use

    if connect_args:
        options["connect_args"] = connect_args
    return options


def create_sync_engine(config: BackendConfig, backend: Backend) -> Engine:
    """Create a blocking engine for ``config``.

    Raises:
        ConnectionError: If the engine cannot be created (e.g. driver missing)
    """
    try:
        engine = create_engine(config.sqlalchemy_url(), **_engine_options(config, False))
    except (sa_exc.ArgumentError, ImportError) as e:
        raise ConnectionError(
            f"Failed to create database engine: {e}", backend.name, {"error": str(e)}
        ) from e
    backend.configure_engine(engine, config)
    return engine


def create_async_db_engine(config: BackendConfig, backend: Backend) -> AsyncEngine:
    """Create a suspending engine for ``config``.

    Raises:
        ConnectionError: If the engine cannot be created (e.g. driver missing)
    """
    try:
        engine = create_async_engine(
            config.sqlalchemy_url(use_async=True), **_engine_options(config, True)
        )
    except (sa_exc.ArgumentError, ImportError) as e:
        raise ConnectionError(
            f"Failed to create database engine: {e}", backend.name, {"error": str(e)}
        ) from e
    backend.configure_engine(engine.sync_engine, config)
    return engine


@contextmanager
def translate_errors(backend: Backend) -> Iterator[None]:
    """Re-raise driver errors as Schemawright exceptions carrying the backend name."""
    try:
        yield
    except sa_exc.DBAPIError as e:
        raise backend.translate_error(e) from e


@contextmanager
def acquiring(config: BackendConfig, backend: Backend) -> Iterator[None]:
    """Translate failures while checking a connection out of the pool."""
    try:
        yield
    except sa_exc.TimeoutError as e:
        raise AcquireTimeoutError(config.pool_acquire_timeout) from e
    except sa_exc.DBAPIError as e:
        raise ConnectionError(
            f"Failed to connect to {backend.name} database: {e.orig}",
            backend.name,
            {"target": config.connection_target if config.backend == BackendKind.SQLITE else None},
        ) from e
