"""Shared test fixtures for Schemawright."""

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from schemawright import (
    Database,
    EntitySpec,
    FieldSpec,
    ManyToMany,
    SchemaSnapshot,
    SingleReference,
)


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        db = Database(url)
        result = db.test_connection()
        db.close()
        return result
    except Exception:
        return False


# Skip marker for tests requiring PostgreSQL
requires_postgresql = pytest.mark.skipif(
    not _psycopg_available(),
    reason="psycopg not installed (install with: pip install schemawright[postgresql])",
)


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from environment or use default.

    Tests using this fixture should also use @requires_postgresql marker.
    """
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        # Default to local PostgreSQL
        url = "postgresql://localhost/schemawright_test"

    # Skip if psycopg not available
    if not _psycopg_available():
        pytest.skip("psycopg not installed")

    # Skip if can't connect (no PostgreSQL server)
    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")

    return url


@pytest.fixture
def memory_db() -> Generator[Database, None, None]:
    """Create a Database on a private SQLite in-memory database.

    This is faster for unit tests that don't need a file or PostgreSQL.
    """
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    """Path of a fresh SQLite database file."""
    return tmp_path / "schemawright.db"


@pytest.fixture
def file_db(sqlite_path: Path) -> Generator[Database, None, None]:
    """Create a Database on a SQLite file, for tests that need several connections."""
    database = Database(f"sqlite:///{sqlite_path}")
    yield database
    database.close()


@pytest.fixture
def pg_db(postgresql_url: str) -> Generator[Database, None, None]:
    """Create a Database on PostgreSQL with an empty public schema.

    The postgresql_url fixture handles skipping when PostgreSQL isn't available.
    """
    database = Database(postgresql_url)
    _reset_public_schema(database)
    yield database
    _reset_public_schema(database)
    database.close()


def _reset_public_schema(database: Database) -> None:
    with database.transaction() as tx:
        tx.execute_sql("DROP SCHEMA public CASCADE")
        tx.execute_sql("CREATE SCHEMA public")


# === Models ===


def _post_entity(relationships: tuple = ()) -> EntitySpec:
    """Post{id: auto bigint pk, title: text, published: bool}."""
    return EntitySpec(
        name="Post",
        fields=(
            FieldSpec(name="id", type="bigint", primary_key=True, auto=True),
            FieldSpec(name="title", type="text"),
            FieldSpec(name="published", type="bool"),
        ),
        relationships=relationships,
    )


def _tag_entity() -> EntitySpec:
    return EntitySpec(
        name="Tag",
        fields=(
            FieldSpec(name="id", type="bigint", primary_key=True, auto=True),
            FieldSpec(name="label", type="text"),
        ),
    )


def _blog_entity() -> EntitySpec:
    return EntitySpec(
        name="Blog",
        fields=(
            FieldSpec(name="id", type="bigint", primary_key=True, auto=True),
            FieldSpec(name="name", type="text"),
        ),
    )


@pytest.fixture
def post_schema() -> SchemaSnapshot:
    """Just Post."""
    return SchemaSnapshot.build([_post_entity()])


@pytest.fixture
def blog_schema() -> SchemaSnapshot:
    """Blog <- Post (nullable blog reference) with Post.tags <-> Tag."""
    post = _post_entity(
        relationships=(
            SingleReference(name="blog", target="Blog", nullable=True),
            ManyToMany(name="tags", target="Tag"),
        )
    )
    return SchemaSnapshot.build([post, _blog_entity(), _tag_entity()])


# Re-export for use in test files
__all__ = ["requires_postgresql"]
