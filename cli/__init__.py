"""
Indexer CLI - ledger projection operations

Commands:
- indexer backfill / tail - Replay ledger ranges into the projection
- indexer reconcile - Correct balance drift from the ledger
- indexer status / verify - Sync status and replayability check
- indexer inspect property/holder/listing/listings - Read the projection
"""

from indexer import __version__

__all__ = ["__version__"]
