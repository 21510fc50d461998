"""Shared state for CLI commands: the target database and where migrations come from."""

from dataclasses import dataclass, field
from pathlib import Path

from schemawright.backends import Backend, get_backend
from schemawright.core.config import BackendConfig
from schemawright.core.database import Database
from schemawright.exceptions import MigrationError
from schemawright.schema.migrations import Migrator, load_batches, load_schema

DEFAULT_DATABASE_URL = "sqlite:///./schemawright.db"


@dataclass
class CLIContext:
    """Options given before the command name, plus the lazily opened database.

    The URL comes from ``--database`` or ``SCHEMAWRIGHT_URL`` (typer resolves
    both) and falls back to a SQLite file in the working directory.
    """

    database_url: str | None
    echo: bool
    json_output: bool
    _db: Database | None = field(default=None, init=False, repr=False)

    @property
    def url(self) -> str:
        return self.database_url or DEFAULT_DATABASE_URL

    def config(self) -> BackendConfig:
        """Parse the URL.

        Raises:
            ConfigError: If the URL names an unsupported backend
        """
        return BackendConfig.from_url(self.url, echo=self.echo)

    def backend(self, override: str | None = None) -> Backend:
        """Backend to render SQL for, without opening a connection."""
        return get_backend(override or self.config().backend)

    def get_db(self) -> Database:
        """Open the database handle on first use."""
        if self._db is None:
            self._db = Database(self.config())
        return self._db

    def migrator(self, migrations: Path, model: Path | None = None) -> Migrator:
        """Diff-derived migrator for ``--model``, file-driven otherwise.

        Raises:
            MigrationError: If neither a model nor the migrations file exists
        """
        if model is not None:
            return Migrator(desired=load_schema(model))
        if not migrations.exists():
            raise MigrationError(
                f"Migrations file {migrations} not found. "
                "Run 'schemawright makemigration' first or pass --model.",
                {"path": str(migrations)},
            )
        return Migrator(batches=load_batches(migrations))

    def close(self) -> None:
        """Dispose of the engine if a command opened one."""
        if self._db is not None:
            self._db.close()
            self._db = None
