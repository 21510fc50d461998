"""Output formatting for CLI commands."""

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from schemawright.exceptions import SchemawrightError
from schemawright.schema.migrations import MigrationBatch

console = Console()


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode

    def print_table(
        self,
        title: str,
        data: list[dict[str, Any]],
        columns: list[str],
    ) -> None:
        """Print data as Rich table or JSON array.

        Args:
            title: Table title
            data: List of row dictionaries
            columns: Column names to display
        """
        if self.json_mode:
            print(json.dumps(data, default=str, indent=2))
        else:
            table = Table(title=title, show_header=True, header_style="bold magenta")
            for col in columns:
                table.add_column(col)
            for row in data:
                table.add_row(*[_cell(row.get(col, "")) for col in columns])
            console.print(table)

    def print_batch(self, batch: MigrationBatch) -> None:
        """Print a migration batch with its steps.

        Args:
            batch: Batch to display
        """
        if self.json_mode:
            print(json.dumps(batch.model_dump(mode="json"), default=str, indent=2))
            return

        console.print(f"\n[bold]Migration {batch.version}:[/bold] {batch.name}")
        steps_table = Table(show_header=True, header_style="bold cyan")
        steps_table.add_column("#")
        steps_table.add_column("Kind")
        steps_table.add_column("Change")
        for index, step in enumerate(batch.steps):
            steps_table.add_row(str(index), step.kind, step.describe())
        console.print(steps_table)

    def print_sql(self, statements: list[str]) -> None:
        """Print SQL statements, highlighted in terminal mode.

        Args:
            statements: Statements in execution order
        """
        if self.json_mode:
            print(json.dumps({"statements": statements}, indent=2))
        else:
            console.print(Syntax(";\n\n".join(statements) + ";", "sql", word_wrap=True))

    def print_success(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Print success message.

        Args:
            message: Success message
            details: Optional details to display
        """
        if self.json_mode:
            output = {"success": True, "message": message}
            if details:
                output.update(details)
            print(json.dumps(output, default=str, indent=2))
        else:
            console.print(f"✓ {message}", style="green")
            if details:
                for key, value in details.items():
                    console.print(f"  {key}: {value}", style="dim")

    def print_error(self, error: Exception) -> None:
        """Print error message.

        Args:
            error: Exception to display
        """
        if self.json_mode:
            if isinstance(error, SchemawrightError):
                print(json.dumps(error.to_dict(), default=str, indent=2))
            else:
                print(json.dumps({"error": str(error)}, indent=2))
        else:
            error_text = str(error)
            # For SchemawrightError, include context if available
            if isinstance(error, SchemawrightError) and error.context:
                context_str = "\n".join(f"{k}: {v}" for k, v in error.context.items())
                error_text = f"{error_text}\n\n{context_str}"

            panel = Panel(
                error_text,
                title=f"[red]{type(error).__name__}[/red]",
                border_style="red",
            )
            console.print(panel)


def _cell(value: Any) -> str:
    if isinstance(value, list):
        return "\n".join(str(v) for v in value)
    return str(value)
