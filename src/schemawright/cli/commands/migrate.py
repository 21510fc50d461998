"""Migration commands: makemigration, migrate, status, history and sql."""

from pathlib import Path
from typing import Annotated

import typer

from schemawright.cli.context import CLIContext
from schemawright.cli.output import OutputFormatter
from schemawright.core.config import BackendKind
from schemawright.core.types import SchemaSnapshot
from schemawright.exceptions import MigrationError
from schemawright.schema.migrations import (
    load_batches,
    load_schema,
    make_batch,
    read_history,
    render_batch_sql,
    save_batches,
    schema_at,
)
from schemawright.schema.steps import apply_steps

DEFAULT_MIGRATIONS = "migrations.json"

MigrationsOption = Annotated[
    Path,
    typer.Option("--migrations", "-m", help="Migrations file (JSON)"),
]


def makemigration(
    ctx: typer.Context,
    model: Annotated[Path, typer.Argument(help="Model description (JSON)")],
    migrations: MigrationsOption = Path(DEFAULT_MIGRATIONS),
    label: Annotated[
        str,
        typer.Option("--label", "-l", help="Label appended to the migration name"),
    ] = "auto",
) -> None:
    """Diff a model description against a migrations file and append a new migration.

    No database is contacted; the current schema is replayed from the file.

    Examples:

        schemawright makemigration models.json
        schemawright makemigration models.json --label add_tags
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        desired = load_schema(model)
        batches = load_batches(migrations)
        current = schema_at(batches)
        batch = make_batch(current, desired, label)

        if batch is None:
            formatter.print_success("No changes detected", {"migrations": str(migrations)})
            return

        save_batches(migrations, [*batches, batch])
        formatter.print_batch(batch)
        if not cli_ctx.json_output:
            formatter.print_success(
                f"Wrote migration {batch.version} to {migrations}",
                {"steps": len(batch.steps)},
            )

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)


def migrate(
    ctx: typer.Context,
    migrations: MigrationsOption = Path(DEFAULT_MIGRATIONS),
    model: Annotated[
        Path | None,
        typer.Option("--model", help="Migrate straight to a model description (JSON)"),
    ] = None,
) -> None:
    """Apply pending migrations to the database.

    Examples:

        schemawright migrate
        schemawright --database postgresql://localhost/app migrate -m migrations.json
        schemawright migrate --model models.json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        migrator = cli_ctx.migrator(migrations, model)
        applied = migrator.apply_pending(cli_ctx.get_db())

        if not applied:
            formatter.print_success("Database is up to date")
            return

        formatter.print_success(
            f"Applied {len(applied)} migration(s)",
            {"applied": [f"{r.version} {r.name}" for r in applied]},
        )

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


def status(
    ctx: typer.Context,
    migrations: MigrationsOption = Path(DEFAULT_MIGRATIONS),
    model: Annotated[
        Path | None,
        typer.Option("--model", help="Compare against a model description (JSON)"),
    ] = None,
) -> None:
    """Show whether the database has pending migrations.

    Examples:

        schemawright status
        schemawright --json status --model models.json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        migrator = cli_ctx.migrator(migrations, model)
        result = migrator.status(cli_ctx.get_db())
        formatter.print_success(f"Database is {result.state}", result.to_dict())

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


def history(ctx: typer.Context) -> None:
    """List migrations recorded in the database.

    Examples:

        schemawright history
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        with cli_ctx.get_db().connect() as connection:
            records = read_history(connection)

        formatter.print_table(
            "Migration History",
            [r.to_dict() for r in records],
            ["version", "name", "applied_at", "steps"],
        )

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


def sql(
    ctx: typer.Context,
    migrations: MigrationsOption = Path(DEFAULT_MIGRATIONS),
    backend: Annotated[
        BackendKind | None,
        typer.Option("--backend", "-b", help="Render for this backend instead of the database's"),
    ] = None,
    version: Annotated[
        int | None,
        typer.Option("--version", "-v", help="Render only this migration"),
    ] = None,
    down: Annotated[
        bool,
        typer.Option("--down", help="Render the statements that undo the migrations"),
    ] = False,
) -> None:
    """Print the DDL for migrations without touching the database.

    Examples:

        schemawright sql
        schemawright sql --backend postgresql --version 2
        schemawright sql --down --version 3
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        batches = load_batches(migrations)
        target = cli_ctx.backend(backend.value if backend else None)

        statements: list[str] = []
        before = SchemaSnapshot.empty()
        rendered: list[list[str]] = []
        for batch in batches:
            after = apply_steps(before, batch.steps, version=batch.version)
            if version is None or batch.version == version:
                if down:
                    rendered.append(render_batch_sql(batch.invert(), target, after))
                else:
                    rendered.append(render_batch_sql(batch, target, before))
            before = after

        if version is not None and not rendered:
            raise MigrationError(
                f"Migration {version} not found in {migrations}.",
                {"version": version, "path": str(migrations)},
            )
        for chunk in reversed(rendered) if down else rendered:
            statements.extend(chunk)

        formatter.print_sql(statements)

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
