"""CLI command tests for Schemawright."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from schemawright.backends import PostgresBackend, SqliteBackend
from schemawright.cli.context import DEFAULT_DATABASE_URL, CLIContext
from schemawright.cli.main import app
from schemawright.exceptions import MigrationError

runner = CliRunner()

POST = {
    "name": "Post",
    "fields": [
        {"name": "id", "type": "bigint", "primary_key": True, "auto": True},
        {"name": "title", "type": "text"},
        {"name": "published", "type": "bool"},
    ],
}

LIKES = {"name": "likes", "type": "int", "default": 0}


def _write_model(path: Path, *entities: dict) -> Path:
    path.write_text(json.dumps({"entities": list(entities)}))
    return path


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite database file."""
    return f"sqlite:///{tmp_path / 'app.db'}"


@pytest.fixture
def model(tmp_path: Path) -> Path:
    """Model description with just Post."""
    return _write_model(tmp_path / "models.json", POST)


@pytest.fixture
def migrations(tmp_path: Path) -> Path:
    return tmp_path / "migrations.json"


def _makemigration(model: Path, migrations: Path, *extra: str):
    return runner.invoke(
        app, ["--json", "makemigration", str(model), "-m", str(migrations), *extra]
    )


class TestVersionCommand:
    """Test the version command."""

    def test_version_output(self) -> None:
        """Test that version command shows version info."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Schemawright v" in result.stdout


class TestMakemigration:
    """Test writing migration files."""

    def test_first_migration(self, model: Path, migrations: Path) -> None:
        """The first migration creates every entity."""
        result = _makemigration(model, migrations, "--label", "init")
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert data["version"] == 1
        assert data["name"].endswith("_init")
        assert [s["kind"] for s in data["steps"]] == ["create_entity"]
        assert len(json.loads(migrations.read_text())["migrations"]) == 1

    def test_no_changes(self, model: Path, migrations: Path) -> None:
        """Running again without model changes writes nothing."""
        _makemigration(model, migrations)
        result = _makemigration(model, migrations)
        assert result.exit_code == 0
        assert json.loads(result.stdout)["message"] == "No changes detected"
        assert len(json.loads(migrations.read_text())["migrations"]) == 1

    def test_appends_changes(self, model: Path, migrations: Path, tmp_path: Path) -> None:
        """A changed model appends the next migration."""
        _makemigration(model, migrations)
        changed = _write_model(
            tmp_path / "models_v2.json", {**POST, "fields": [*POST["fields"], LIKES]}
        )
        result = _makemigration(changed, migrations)
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert data["version"] == 2
        assert [s["kind"] for s in data["steps"]] == ["add_field"]

    def test_terminal_output(self, model: Path, migrations: Path) -> None:
        """Rich output names the written file."""
        result = runner.invoke(app, ["makemigration", str(model), "-m", str(migrations)])
        assert result.exit_code == 0
        assert "Wrote migration 1" in result.stdout

    def test_invalid_model(self, tmp_path: Path, migrations: Path) -> None:
        """Invalid model descriptions exit with code 1."""
        bad = _write_model(tmp_path / "bad.json", {"name": "Post", "fields": []})
        result = _makemigration(bad, migrations)
        assert result.exit_code == 1
        assert "error" in json.loads(result.stdout)


class TestMigrate:
    """Test applying migrations."""

    def test_migrate_from_file(self, db_url: str, model: Path, migrations: Path) -> None:
        """Pending migrations from the file are applied once."""
        _makemigration(model, migrations)

        result = runner.invoke(app, ["-d", db_url, "--json", "migrate", "-m", str(migrations)])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert data["message"] == "Applied 1 migration(s)"

        result = runner.invoke(app, ["-d", db_url, "--json", "migrate", "-m", str(migrations)])
        assert json.loads(result.stdout)["message"] == "Database is up to date"

    def test_migrate_from_model(self, db_url: str, model: Path) -> None:
        """--model migrates straight to a model description."""
        result = runner.invoke(app, ["-d", db_url, "migrate", "--model", str(model)])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        assert "Applied 1 migration(s)" in result.stdout

    def test_missing_migrations_file(self, db_url: str, tmp_path: Path) -> None:
        """Without a file or a model there is nothing to apply."""
        missing = tmp_path / "missing.json"
        result = runner.invoke(app, ["-d", db_url, "--json", "migrate", "-m", str(missing)])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] == "MigrationError"
        assert "makemigration" in data["message"]

    def test_database_url_from_env(
        self, db_url: str, model: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """SCHEMAWRIGHT_URL is used when --database is not given."""
        monkeypatch.setenv("SCHEMAWRIGHT_URL", db_url)
        result = runner.invoke(app, ["--json", "migrate", "--model", str(model)])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        result = runner.invoke(app, ["-d", db_url, "--json", "status", "--model", str(model)])
        assert json.loads(result.stdout)["state"] == "up_to_date"


class TestStatusAndHistory:
    """Test read-only commands."""

    def test_status(self, db_url: str, model: Path, migrations: Path) -> None:
        """Status moves from uninitialized to up to date."""
        _makemigration(model, migrations)
        args = ["-d", db_url, "--json", "status", "-m", str(migrations)]

        data = json.loads(runner.invoke(app, args).stdout)
        assert data["state"] == "uninitialized"
        assert data["pending"] == 1

        runner.invoke(app, ["-d", db_url, "migrate", "-m", str(migrations)])
        data = json.loads(runner.invoke(app, args).stdout)
        assert data["state"] == "up_to_date"
        assert data["current_version"] == 1

    def test_history(self, db_url: str, model: Path, migrations: Path) -> None:
        """History lists applied migrations."""
        _makemigration(model, migrations, "-l", "init")
        runner.invoke(app, ["-d", db_url, "migrate", "-m", str(migrations)])

        result = runner.invoke(app, ["-d", db_url, "--json", "history"])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert [r["version"] for r in data] == [1]
        assert data[0]["name"].endswith("_init")
        assert data[0]["steps"] == ["create entity Post"]

    def test_history_empty(self, db_url: str) -> None:
        """A fresh database has no history."""
        result = runner.invoke(app, ["-d", db_url, "--json", "history"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []


class TestSql:
    """Test DDL previews."""

    @pytest.fixture
    def two_migrations(self, model: Path, migrations: Path, tmp_path: Path) -> Path:
        _makemigration(model, migrations)
        changed = _write_model(
            tmp_path / "models_v2.json", {**POST, "fields": [*POST["fields"], LIKES]}
        )
        _makemigration(changed, migrations)
        return migrations

    def test_sql_all(self, db_url: str, two_migrations: Path) -> None:
        """Every migration is rendered in order."""
        result = runner.invoke(app, ["-d", db_url, "--json", "sql", "-m", str(two_migrations)])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        statements = json.loads(result.stdout)["statements"]
        assert statements[0].startswith('CREATE TABLE "Post"')
        assert statements[-1] == 'ALTER TABLE "Post" ADD COLUMN likes INTEGER DEFAULT 0 NOT NULL'

    def test_sql_for_postgresql(self, two_migrations: Path) -> None:
        """--backend renders for another dialect."""
        result = runner.invoke(
            app,
            ["--json", "sql", "-m", str(two_migrations), "--backend", "postgresql", "-v", "1"],
        )
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        statements = json.loads(result.stdout)["statements"]
        assert len(statements) == 1
        assert "BIGSERIAL" in statements[0]

    def test_sql_down(self, db_url: str, two_migrations: Path) -> None:
        """--down renders the undo statements, newest first."""
        result = runner.invoke(
            app, ["-d", db_url, "--json", "sql", "-m", str(two_migrations), "--down"]
        )
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        statements = json.loads(result.stdout)["statements"]
        assert statements[-1] == 'DROP TABLE "Post"'
        assert len(statements) == 5  # sqlite rebuild for the dropped column, then the drop

    def test_sql_unknown_version(self, db_url: str, two_migrations: Path) -> None:
        """Asking for a missing migration exits with code 1."""
        result = runner.invoke(
            app, ["-d", db_url, "--json", "sql", "-m", str(two_migrations), "-v", "9"]
        )
        assert result.exit_code == 1
        assert "not found" in json.loads(result.stdout)["message"]


class TestCLIContext:
    """Options shared by every command."""

    def test_default_url(self) -> None:
        cli_ctx = CLIContext(database_url=None, echo=False, json_output=False)
        assert cli_ctx.url == DEFAULT_DATABASE_URL
        assert isinstance(cli_ctx.backend(), SqliteBackend)

    def test_backend_override_stays_offline(self, db_url: str) -> None:
        """Rendering SQL for another backend never opens the database."""
        cli_ctx = CLIContext(database_url=db_url, echo=False, json_output=False)
        assert isinstance(cli_ctx.backend("postgresql"), PostgresBackend)
        assert cli_ctx._db is None
        cli_ctx.close()

    def test_migrator_sources(self, db_url: str, model: Path, migrations: Path) -> None:
        cli_ctx = CLIContext(database_url=db_url, echo=False, json_output=False)
        assert cli_ctx.migrator(migrations, model).desired is not None
        with pytest.raises(MigrationError, match="not found"):
            cli_ctx.migrator(migrations)

    def test_close_disposes_database(self, db_url: str) -> None:
        cli_ctx = CLIContext(database_url=db_url, echo=False, json_output=False)
        db = cli_ctx.get_db()
        assert cli_ctx.get_db() is db
        cli_ctx.close()
        assert cli_ctx._db is None
