"""
Reconcile command: correct holder balances from the ledger
"""

from typing import Optional

import typer
from rich.table import Table

from indexer.core.errors import IndexerError

from cli.context import console, emit, fail, open_service


def reconcile_command(
    ctx: typer.Context,
    thorough: bool = typer.Option(
        False, "--all", "-a", help="Check every holder touched since the last thorough pass"
    ),
    sample: Optional[int] = typer.Option(None, "--sample", "-n", help="Number of holders to sample"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Compare projected balances with the ledger and overwrite drift.

    Examples:
        indexer reconcile
        indexer reconcile --sample 200
        indexer reconcile --all --json
    """
    try:
        with open_service(ctx) as service:
            report = service.reconcile(sample_size=sample, thorough=thorough)
            if report.corrected:
                service.save_snapshot()
    except (IndexerError, ValueError, OSError) as e:
        fail(e, json_output)
        raise typer.Exit(2)

    if json_output:
        emit({"success": True, **report.to_dict()})
        return

    console.print(
        f"[bold]Checked {report.checked} holders as of block {report.as_of_block}[/bold] "
        f"({report.skipped} skipped)"
    )
    if not report.drift:
        console.print("[green]✓ No drift[/green]")
        return

    table = Table(title="Drift")
    table.add_column("Property", justify="right")
    table.add_column("Holder", style="cyan")
    table.add_column("Projected", justify="right")
    table.add_column("Ledger", justify="right")
    table.add_column("Result")
    for d in report.drift:
        table.add_row(
            str(d.property_id),
            d.address,
            str(d.projected),
            str(d.authoritative),
            "[green]corrected[/green]" if d.corrected else "[yellow]stale[/yellow]",
        )
    console.print(table)
