"""
IdempotencyGuard: the single deduplication point for event application.

Every decoded event is admitted at most once by its composite key, whether it
arrives through live-tailing, backfill or reorg reprocessing.
"""

import threading
from typing import Iterable, List, Set

from .events import EventKey


class IdempotencyGuard:
    """
    Thread-safe record of claimed event keys.

    Usage:
        guard = IdempotencyGuard()
        if guard.try_claim(event.meta.key):
            projector.apply(event)
    """

    def __init__(self, keys: Iterable[EventKey] = ()) -> None:
        self._keys: Set[EventKey] = set(keys)
        self._lock = threading.Lock()

    def try_claim(self, key: EventKey) -> bool:
        """
        Claim a key.

        Returns:
            True and records the key on first call; False on every later call
            for the same key (the guard state is left unchanged).
        """
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: EventKey) -> None:
        """
        Forget a claimed key so the event can be applied later.

        Used only when application was refused for a recoverable reason
        (missing dependency) and nothing was mutated.
        """
        with self._lock:
            self._keys.discard(key)

    def __contains__(self, key: EventKey) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def export(self) -> List[str]:
        """Sorted string form of all claimed keys (for snapshots)."""
        with self._lock:
            return sorted(str(k) for k in self._keys)

    @classmethod
    def from_export(cls, keys: Iterable[str]) -> "IdempotencyGuard":
        return cls(EventKey.parse(k) for k in keys)
