"""
Tests for RetryingLedger: backoff, exhaustion, concurrency bound.
"""

import random
import threading

import pytest

from indexer.core.errors import LedgerError, LedgerTransientError, LedgerUnavailableError
from indexer.ledger.memory import MemoryLedger
from indexer.ledger.retry import RetryingLedger


def test_backoff_is_exponential_with_bounded_jitter():
    """Delay doubles per attempt, plus jitter below one base interval."""
    ledger = RetryingLedger(MemoryLedger(), backoff_seconds=1.0, max_backoff_seconds=100.0, rng=random.Random(7))

    for attempt in range(5):
        delay = ledger.backoff_for(attempt)
        assert 2 ** attempt <= delay < 2 ** attempt + 1.0


def test_backoff_capped():
    ledger = RetryingLedger(MemoryLedger(), backoff_seconds=1.0, max_backoff_seconds=5.0)
    assert ledger.backoff_for(10) == 5.0


def test_transient_errors_retried_then_succeed():
    """Two throttled calls, third succeeds; two sleeps recorded."""
    inner = MemoryLedger()
    inner.set_head(42)
    sleeps = []
    ledger = RetryingLedger(inner, max_attempts=3, backoff_seconds=0.1, sleep=sleeps.append)
    inner.fail_next("get_block_number", LedgerTransientError("rate limit"), times=2)

    assert ledger.get_block_number() == 42
    assert len(sleeps) == 2
    assert sleeps[0] < sleeps[1] or sleeps[1] == ledger.max_backoff_seconds
    assert inner.calls["get_block_number"] == 3


def test_exhaustion_raises_unavailable():
    """After max_attempts transient failures the call is fatal."""
    inner = MemoryLedger()
    ledger = RetryingLedger(inner, max_attempts=3, sleep=lambda s: None)
    inner.fail_next("get_balance", LedgerTransientError("timeout"), times=3)

    with pytest.raises(LedgerUnavailableError):
        ledger.get_balance("0x" + "a1" * 20, "0x" + "11" * 20, 1)
    assert inner.calls["get_balance"] == 3


def test_non_transient_error_not_retried():
    """Permanent ledger errors propagate on the first attempt."""
    inner = MemoryLedger()
    sleeps = []
    ledger = RetryingLedger(inner, max_attempts=5, sleep=sleeps.append)
    inner.fail_next("get_block_hash", LedgerError("execution reverted"))

    with pytest.raises(LedgerError) as exc:
        ledger.get_block_hash(0)
    assert not isinstance(exc.value, LedgerUnavailableError)
    assert sleeps == []
    assert inner.calls["get_block_hash"] == 1


class _CountingLedger(MemoryLedger):
    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0
        self._count_lock = threading.Lock()
        self.gate = threading.Event()

    def get_block_number(self):
        with self._count_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        self.gate.wait(timeout=0.05)
        with self._count_lock:
            self.active -= 1
        return super().get_block_number()


def test_concurrency_bounded():
    """No more than max_concurrency calls are in flight at once."""
    inner = _CountingLedger()
    ledger = RetryingLedger(inner, max_concurrency=2)

    threads = [threading.Thread(target=ledger.get_block_number) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert 1 <= inner.peak <= 2


def test_min_interval_paces_calls():
    """Calls closer than min_interval wait for the remainder."""
    sleeps = []
    ledger = RetryingLedger(MemoryLedger(), min_interval_seconds=10.0, sleep=sleeps.append)

    ledger.get_block_number()
    ledger.get_block_number()

    # The injected sleep does not advance the clock, so the second call waits
    # almost the full interval
    assert sleeps
    assert 9.0 < sleeps[-1] <= 10.0
