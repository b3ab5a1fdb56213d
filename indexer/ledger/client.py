"""
LedgerClient abstract interface.

Defines the two ledger surfaces the indexer consumes: the log source
(get_logs plus block metadata) and the state query (get_balance).
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..core.events import RawLog


class LedgerClient(ABC):
    """
    Read-only access to the ledger, the sole source of truth.

    Implementations raise LedgerTransientError for retryable failures
    (timeouts, throttling, dropped connections) and LedgerError otherwise.
    """

    @abstractmethod
    def get_logs(
        self,
        address: str,
        topics: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> List[RawLog]:
        """
        Fetch logs emitted by one contract in an inclusive block range.

        Args:
            address: Contract address
            topics: Accepted topic0 values (any-of)
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Raw logs, in any order
        """
        ...

    @abstractmethod
    def get_block_number(self) -> int:
        """Current head block number."""
        ...

    @abstractmethod
    def get_block_hash(self, block_number: int) -> str:
        """Hash of a block; a changed value for a processed block means reorg."""
        ...

    @abstractmethod
    def get_balance(
        self,
        address: str,
        holder: str,
        property_id: int,
        block_number: Optional[int] = None,
    ) -> int:
        """
        Authoritative share balance of holder in property_id.

        Args:
            block_number: Read state as of this block (None = head)
        """
        ...
