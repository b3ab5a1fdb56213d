"""
Tests for IdempotencyGuard and KeyedLocks.
"""

import threading

from indexer.core.events import EventKey
from indexer.core.guard import IdempotencyGuard
from indexer.core.locks import KeyedLocks


def test_try_claim_first_call_only():
    """First claim wins; every later claim of the same key is refused."""
    guard = IdempotencyGuard()
    key = EventKey("0xabc", 3)

    assert guard.try_claim(key) is True
    assert guard.try_claim(key) is False
    assert guard.try_claim(EventKey("0xabc", 3)) is False
    assert len(guard) == 1


def test_item_index_distinguishes_batch_items():
    """Batch items of one log have distinct keys; the plain log key differs too."""
    guard = IdempotencyGuard()
    assert guard.try_claim(EventKey("0xabc", 3, 0))
    assert guard.try_claim(EventKey("0xabc", 3, 1))
    assert guard.try_claim(EventKey("0xabc", 3))
    assert not guard.try_claim(EventKey("0xabc", 3, 1))


def test_release_allows_reclaim():
    """A released key can be claimed again."""
    guard = IdempotencyGuard()
    key = EventKey("0xabc", 1)
    guard.try_claim(key)
    guard.release(key)

    assert key not in guard
    assert guard.try_claim(key) is True


def test_export_roundtrip_preserves_keys():
    """Exported keys restore a guard that refuses the same keys."""
    guard = IdempotencyGuard()
    keys = [EventKey("0x01", 0), EventKey("0x01", 1, 2), EventKey("0x02", 5)]
    for k in keys:
        guard.try_claim(k)

    exported = guard.export()
    assert exported == sorted(exported)
    restored = IdempotencyGuard.from_export(exported)
    for k in keys:
        assert restored.try_claim(k) is False


def test_concurrent_claims_admit_exactly_one():
    """Under contention, exactly one thread wins each key."""
    guard = IdempotencyGuard()
    key = EventKey("0xrace", 0)
    wins = []

    def worker():
        if guard.try_claim(key):
            wins.append(1)

    threads = [threading.Thread(target=worker) for _ in range(32)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1


def test_keyed_locks_serialize_same_key():
    """Two writers on the same key never overlap."""
    locks = KeyedLocks(stripes=8)
    inside = []
    overlaps = []

    def writer():
        for _ in range(200):
            with locks.hold([("holder", 1, "0xa")]):
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(1)
                inside.pop()

    threads = [threading.Thread(target=writer) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []


def test_keyed_locks_overlapping_sets_do_not_deadlock():
    """Acquiring overlapping key sets in different orders completes."""
    locks = KeyedLocks(stripes=4)
    a, b = ("property", 1), ("property", 2)
    done = []

    def forward():
        for _ in range(200):
            with locks.hold([a, b]):
                pass
        done.append(1)

    def backward():
        for _ in range(200):
            with locks.hold([b, a]):
                pass
        done.append(1)

    threads = [threading.Thread(target=forward), threading.Thread(target=backward)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(done) == 2
