"""Schemawright CLI - Main entry point."""

from typing import Annotated

import typer

import schemawright
from schemawright.cli.commands import migrate
from schemawright.cli.context import CLIContext

# Create main Typer app
app = typer.Typer(
    name="schemawright",
    help="Schemawright CLI - declarative schemas and automatic migrations",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option(
            "--database",
            "-d",
            envvar="SCHEMAWRIGHT_URL",
            help="Database URL (PostgreSQL or SQLite)",
        ),
    ] = None,
    echo: Annotated[
        bool,
        typer.Option(
            "--echo",
            "-e",
            help="Echo SQL statements to console",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON (machine-readable)",
        ),
    ] = False,
) -> None:
    """Initialize CLI context with global options."""
    ctx.obj = CLIContext(
        database_url=database,
        echo=echo,
        json_output=json_output,
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"Schemawright v{schemawright.__version__}")


app.command(name="makemigration")(migrate.makemigration)
app.command(name="migrate")(migrate.migrate)
app.command(name="status")(migrate.status)
app.command(name="history")(migrate.history)
app.command(name="sql")(migrate.sql)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
