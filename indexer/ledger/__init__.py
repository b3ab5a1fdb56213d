"""
Ledger access.

This module provides:
- LedgerClient: abstract log-source and state-query interface
- MemoryLedger: in-process ledger for tests and dry runs
- RetryingLedger: rate limiting, bounded concurrency and backoff
- Web3LedgerClient: JSON-RPC client, in indexer.ledger.web3_client
"""

from .client import LedgerClient
from .memory import MemoryLedger
from .retry import RetryingLedger

__all__ = ["LedgerClient", "MemoryLedger", "RetryingLedger"]
