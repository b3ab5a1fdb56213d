"""
Shared helpers for CLI commands: service construction and error output.
"""

import json
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import typer
from rich.console import Console

from indexer.checkpoint.snapshot import SnapshotStore
from indexer.config import IndexerConfig
from indexer.ledger.client import LedgerClient
from indexer.logging_config import setup_logging
from indexer.service import IndexerService
from indexer.store.projection import ProjectionStore

console = Console()


def load_config() -> IndexerConfig:
    config = IndexerConfig.from_env()
    setup_logging(config.log_level, config.log_format)
    return config


def injected_ledger(ctx: Optional[typer.Context]) -> Optional[LedgerClient]:
    """
    Ledger handed in through the click context object, if any.

    Embedders (and tests) pass obj={"ledger": client} to the app; otherwise
    the service builds its web3 client from INDEXER_RPC_URL.
    """
    obj = ctx.obj if ctx is not None else None
    if isinstance(obj, dict):
        return obj.get("ledger")
    return None


@contextmanager
def open_service(
    ctx: Optional[typer.Context] = None,
    config: Optional[IndexerConfig] = None,
    exclusive: bool = True,
) -> Iterator[IndexerService]:
    """
    Started service for one command, closed on exit.

    Commands that commit take the data directory exclusively and fail with
    DataDirLockedError while a daemon owns it; read-only commands pass
    exclusive=False.
    """
    config = config or load_config()
    service = IndexerService.from_config(config, ledger=injected_ledger(ctx))
    service.start(exclusive=exclusive)
    try:
        yield service
    finally:
        service.close()


def load_projection(config: Optional[IndexerConfig] = None) -> ProjectionStore:
    """Projection from the last snapshot (empty if none); no ledger access."""
    config = config or load_config()
    snapshot = SnapshotStore(config.snapshot_dir).load()
    return snapshot.store if snapshot is not None else ProjectionStore()


def emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def fail(error: Exception, json_output: bool) -> None:
    if json_output:
        emit({"success": False, "error": str(error), "type": type(error).__name__})
    else:
        console.print(f"[red]Error:[/red] {error}")
