#!/usr/bin/env python3
"""
Indexer CLI - ledger projection operations

Main entrypoint for the indexer command-line tool.
"""

import json

import typer
from rich.console import Console
from rich.table import Table

from cli.commands import inspect, reconcile, status, sync

app = typer.Typer(
    name="indexer",
    help="Ledger projection indexer for fractional property shares",
    add_completion=False,
)

console = Console()

# Command groups
app.add_typer(inspect.app, name="inspect", help="Read the projection")

# Standalone commands
app.command("backfill")(sync.backfill_command)
app.command("tail")(sync.tail_command)
app.command("reconcile")(reconcile.reconcile_command)
app.command("status")(status.status_command)
app.command("verify")(status.verify_command)


@app.command()
def version(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show version information."""
    from cli import __version__

    if json_output:
        print(json.dumps({"version": __version__}))
        return

    table = Table(show_header=False, box=None)
    table.add_row("[bold]Indexer CLI[/bold]", f"v{__version__}")
    table.add_row("Event sources", "property_share, revenue_splitter, marketplace")
    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()
