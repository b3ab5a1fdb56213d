"""
In-process ledger for tests and local dry runs.

Stores raw logs and balance history in memory. Logs are expected to be
ABI-encoded the same way a real node returns them, so they go through the
real decoder.
"""

import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..core.errors import LedgerError
from ..core.events import RawLog
from .client import LedgerClient


class MemoryLedger(LedgerClient):
    """
    Deterministic ledger double.

    Failures can be injected with fail_next(): the next N calls to the named
    operation raise the given exception before touching any state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._logs: List[RawLog] = []
        self._hashes: Dict[int, str] = {}
        # (contract, holder, property) -> [(block, balance)] ascending by block
        self._balances: Dict[Tuple[str, str, int], List[Tuple[int, int]]] = defaultdict(list)
        self._head = 0
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self.calls: Dict[str, int] = defaultdict(int)

    # Setup helpers

    def add_log(self, log: RawLog) -> None:
        with self._lock:
            self._logs.append(log)
            self._hashes.setdefault(log.block_number, log.block_hash)
            self._head = max(self._head, log.block_number)

    def set_head(self, block_number: int) -> None:
        with self._lock:
            self._head = block_number

    def set_block_hash(self, block_number: int, block_hash: str) -> None:
        with self._lock:
            self._hashes[block_number] = block_hash

    def replace_logs(self, predicate: Callable[[RawLog], bool], replacement: Sequence[RawLog]) -> None:
        """Drop logs matching predicate and add replacement (simulated reorg)."""
        with self._lock:
            self._logs = [x for x in self._logs if not predicate(x)]
        for log in replacement:
            self.add_log(log)
            self.set_block_hash(log.block_number, log.block_hash)

    def set_balance(
        self, address: str, holder: str, property_id: int, balance: int, block_number: int = 0
    ) -> None:
        with self._lock:
            history = self._balances[(address.lower(), holder.lower(), property_id)]
            history.append((block_number, balance))
            history.sort()

    def fail_next(self, operation: str, exc: Exception, times: int = 1) -> None:
        with self._lock:
            self._failures[operation].extend([exc] * times)

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
            pending = self._failures.get(operation)
            if pending:
                raise pending.pop(0)

    # LedgerClient

    def get_logs(self, address: str, topics: Sequence[str], from_block: int, to_block: int) -> List[RawLog]:
        self._maybe_fail("get_logs")
        wanted = {t.lower() for t in topics}
        with self._lock:
            return [
                x for x in self._logs
                if x.address.lower() == address.lower()
                and from_block <= x.block_number <= to_block
                and x.topics
                and (not wanted or x.topics[0].lower() in wanted)
            ]

    def get_block_number(self) -> int:
        self._maybe_fail("get_block_number")
        with self._lock:
            return self._head

    def get_block_hash(self, block_number: int) -> str:
        self._maybe_fail("get_block_hash")
        with self._lock:
            if block_number > self._head:
                raise LedgerError(f"block {block_number} is beyond head {self._head}")
            return self._hashes.get(block_number, f"0x{block_number:064x}")

    def get_balance(
        self, address: str, holder: str, property_id: int, block_number: Optional[int] = None
    ) -> int:
        self._maybe_fail("get_balance")
        with self._lock:
            history = self._balances.get((address.lower(), holder.lower(), property_id), [])
            balance = 0
            for block, value in history:
                if block_number is not None and block > block_number:
                    break
                balance = value
            return balance
