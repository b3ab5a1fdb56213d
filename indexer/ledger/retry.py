"""
Rate-limited, retrying ledger access.

Wraps any LedgerClient with:
- bounded concurrency (at most max_concurrency calls in flight)
- a minimum interval between call starts
- exponential backoff with jitter on LedgerTransientError

Exhausting max_attempts raises LedgerUnavailableError; callers treat that as
fatal for the block range being processed.
"""

import logging
import random
import threading
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from ..core.errors import LedgerTransientError, LedgerUnavailableError
from ..core.events import RawLog
from .. import metrics
from .client import LedgerClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryingLedger(LedgerClient):
    """
    LedgerClient decorator adding rate limiting and retries.

    Usage:
        ledger = RetryingLedger(Web3LedgerClient(url), max_attempts=5)
        logs = ledger.get_logs(address, topics, 100, 200)
    """

    def __init__(
        self,
        inner: LedgerClient,
        max_attempts: int = 5,
        backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 30.0,
        max_concurrency: int = 4,
        min_interval_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.inner = inner
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.min_interval_seconds = min_interval_seconds
        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._pace = threading.Lock()
        self._last_start = 0.0
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based): exponential + jitter."""
        base = self.backoff_seconds * (2 ** attempt)
        jitter = self._rng.uniform(0, self.backoff_seconds)
        return min(self.max_backoff_seconds, base + jitter)

    def _wait_turn(self) -> None:
        if self.min_interval_seconds <= 0:
            return
        with self._pace:
            wait = self._last_start + self.min_interval_seconds - time.monotonic()
            if wait > 0:
                self._sleep(wait)
            self._last_start = time.monotonic()

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            with self._slots:
                self._wait_turn()
                try:
                    return fn()
                except LedgerTransientError as ex:
                    last_error = ex
            if attempt < self.max_attempts - 1:
                delay = self.backoff_for(attempt)
                metrics.track_ledger_retry(operation)
                logger.warning(
                    f"Ledger {operation} failed ({last_error}), retry {attempt + 1}/"
                    f"{self.max_attempts - 1} in {delay:.2f}s"
                )
                self._sleep(delay)
        logger.error(f"Ledger {operation} failed after {self.max_attempts} attempts: {last_error}")
        raise LedgerUnavailableError(
            f"{operation} failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def get_logs(self, address: str, topics: Sequence[str], from_block: int, to_block: int) -> List[RawLog]:
        return self._call("get_logs", lambda: self.inner.get_logs(address, topics, from_block, to_block))

    def get_block_number(self) -> int:
        return self._call("get_block_number", self.inner.get_block_number)

    def get_block_hash(self, block_number: int) -> str:
        return self._call("get_block_hash", lambda: self.inner.get_block_hash(block_number))

    def get_balance(
        self, address: str, holder: str, property_id: int, block_number: Optional[int] = None
    ) -> int:
        return self._call(
            "get_balance",
            lambda: self.inner.get_balance(address, holder, property_id, block_number),
        )
