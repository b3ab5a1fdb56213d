"""
Per-aggregate write serialization.

A fixed pool of locks is striped over aggregate keys. Writers acquire every
stripe their event touches, in ascending stripe order, so two writers touching
overlapping keys never interleave and never deadlock.
"""

import threading
import zlib
from contextlib import contextmanager
from typing import Hashable, Iterable, Iterator, List

from .canonical import canonical_json_bytes

DEFAULT_STRIPES = 64


class KeyedLocks:
    """
    Single-writer-per-key discipline for aggregate mutations.

    Usage:
        locks = KeyedLocks()
        with locks.hold([("holder", 1, "0xabc"), ("property", 1)]):
            ...  # read, compute and commit
    """

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def _stripe(self, key: Hashable) -> int:
        # crc32 of canonical bytes: stable across processes, unlike hash()
        return zlib.crc32(canonical_json_bytes(key)) % len(self._locks)

    @contextmanager
    def hold(self, keys: Iterable[Hashable]) -> Iterator[None]:
        stripes = sorted({self._stripe(k) for k in keys})
        acquired: List[threading.Lock] = []
        try:
            for idx in stripes:
                lock = self._locks[idx]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
