"""Backend adapters for the supported SQL engines."""

from schemawright.backends.base import FIELD_TYPE_MAP, Backend
from schemawright.backends.postgresql import PostgresBackend
from schemawright.backends.sqlite import SqliteBackend
from schemawright.backends.tables import SchemaTables
from schemawright.exceptions import ConfigError

# The supported set is closed
BACKENDS: dict[str, type[Backend]] = {
    SqliteBackend.name: SqliteBackend,
    PostgresBackend.name: PostgresBackend,
}


def get_backend(name: str) -> Backend:
    """Return the backend for a name or SQLAlchemy dialect name.

    Raises:
        ConfigError: If the backend is not supported
    """
    if name not in BACKENDS:
        raise ConfigError(
            f"Unsupported backend: {name}. Supported: {', '.join(BACKENDS)}",
            {"backend": name, "supported": list(BACKENDS)},
        )
    return BACKENDS[name]()


__all__ = [
    "BACKENDS",
    "FIELD_TYPE_MAP",
    "Backend",
    "PostgresBackend",
    "SchemaTables",
    "SqliteBackend",
    "get_backend",
]
