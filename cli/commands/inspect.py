"""
Inspect commands: property, holder, listing, listings

Read the projection from the last snapshot; no ledger access.
"""

from typing import Any, Dict, List, Optional

import typer
from rich.table import Table

from indexer import query
from indexer.core.errors import IndexerError

from cli.context import console, emit, fail, load_projection

app = typer.Typer()


def _show_record(title: str, record: Dict[str, Any]) -> None:
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key in sorted(record):
        value = record[key]
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


def _not_found(what: str, json_output: bool) -> None:
    if json_output:
        emit({"success": False, "error": f"{what} not found"})
    else:
        console.print(f"[yellow]{what} not found[/yellow]")
    raise typer.Exit(1)


def _load(json_output: bool):
    try:
        return load_projection()
    except (IndexerError, ValueError, OSError) as e:
        fail(e, json_output)
        raise typer.Exit(2)


@app.command("property")
def property_command(
    property_id: int = typer.Argument(..., help="Property (token) id"),
    holders: bool = typer.Option(False, "--holders", help="Also list non-zero holders"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show one property.

    Examples:
        indexer inspect property 1
        indexer inspect property 1 --holders --json
    """
    store = _load(json_output)
    record = query.get_property(store, property_id)
    if record is None:
        _not_found(f"Property {property_id}", json_output)

    holder_rows: Optional[List[Dict[str, Any]]] = None
    if holders:
        holder_rows = query.list_holders(store, property_id)

    if json_output:
        payload = {"property": record}
        if holder_rows is not None:
            payload["holders"] = holder_rows
        emit(payload)
        return

    _show_record(f"Property {property_id}", record)
    if holder_rows is not None:
        table = Table(title="Holders")
        table.add_column("Address", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("Claimed", justify="right")
        for h in holder_rows:
            table.add_row(h["address"], str(h["balance"]), str(h["total_claimed"]))
        console.print(table)


@app.command()
def holder(
    property_id: int = typer.Argument(..., help="Property (token) id"),
    address: str = typer.Argument(..., help="Holder address"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show one holder of a property.

    Examples:
        indexer inspect holder 1 0xabc...
    """
    store = _load(json_output)
    record = query.get_holder(store, property_id, address)
    if record is None:
        _not_found(f"Holder {address} of property {property_id}", json_output)
    if json_output:
        emit({"holder": record})
    else:
        _show_record(f"Holder {address.lower()}", record)


@app.command()
def listing(
    listing_id: int = typer.Argument(..., help="Listing id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show one marketplace listing and its purchases.

    Examples:
        indexer inspect listing 7
    """
    store = _load(json_output)
    record = query.get_listing(store, listing_id)
    if record is None:
        _not_found(f"Listing {listing_id}", json_output)
    purchases = query.get_purchase_history(store, listing_id)
    if json_output:
        emit({"listing": record, "purchases": purchases})
        return

    _show_record(f"Listing {listing_id}", record)
    if purchases:
        table = Table(title="Purchases")
        table.add_column("Block", justify="right")
        table.add_column("Buyer", style="cyan")
        table.add_column("Amount", justify="right")
        table.add_column("Price", justify="right")
        for p in purchases:
            table.add_row(str(p["block_number"]), p["buyer"], str(p["amount"]), str(p["total_price"]))
        console.print(table)


@app.command()
def listings(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    List active marketplace listings.

    Examples:
        indexer inspect listings --json
    """
    store = _load(json_output)
    rows = query.list_active_listings(store)
    if json_output:
        emit({"listings": rows, "count": len(rows)})
        return

    if not rows:
        console.print("[yellow]No active listings[/yellow]")
        return
    table = Table(title="Active listings")
    table.add_column("Id", justify="right", style="cyan")
    table.add_column("Property", justify="right")
    table.add_column("Seller")
    table.add_column("Amount", justify="right")
    table.add_column("Price/share", justify="right")
    for x in rows:
        table.add_row(str(x["id"]), str(x["property_id"]), x["seller"], str(x["amount"]), str(x["price_per_share"]))
    console.print(table)
