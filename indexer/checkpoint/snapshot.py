"""
Deterministic projection snapshots.

A snapshot holds everything needed to resume without replaying history:
the projection (aggregates and log records), the claimed event keys and the
deferred raw logs still waiting for a dependency. The same projection always
serializes to the same bytes, so its SHA-256 is a stable state hash.

Write order per committed range: snapshot first, then checkpoint. A crash in
between leaves a snapshot that is ahead of its checkpoint; the range is then
replayed and the guard turns every event into a no-op.
"""

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.canonical import canonical_json_bytes
from ..core.errors import IntegrityError
from ..core.guard import IdempotencyGuard
from ..store.projection import ProjectionStore
from .lock import DataDirLock

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def serialize_projection(
    store: ProjectionStore,
    guard: IdempotencyGuard,
    deferred: Optional[List[Dict[str, Any]]] = None,
) -> bytes:
    """
    Serialize projection state to canonical bytes.

    Args:
        store: Projection to serialize
        guard: Claimed event keys
        deferred: Parked entries ({"source", "raw", "key"} dicts)
    """
    state = {
        "version": SNAPSHOT_VERSION,
        "projection": store.to_dict(),
        "guard": guard.export(),
        "deferred": sorted(deferred or [], key=lambda d: d["key"]),
    }
    return canonical_json_bytes(state)


def compute_state_hash(store: ProjectionStore, guard: IdempotencyGuard, deferred=None) -> str:
    """SHA-256 hex digest of the canonical projection bytes."""
    return hashlib.sha256(serialize_projection(store, guard, deferred)).hexdigest()


def projection_hash(store: ProjectionStore) -> str:
    """Hash of the aggregates and log records alone (replay comparisons)."""
    return hashlib.sha256(canonical_json_bytes(store.to_dict())).hexdigest()


@dataclass
class Snapshot:
    store: ProjectionStore
    guard: IdempotencyGuard
    state_hash: str
    deferred: List[Dict[str, Any]] = field(default_factory=list)


class SnapshotStore:
    """
    Single-file snapshot storage.

    Storage format:
    - {directory}/projection.json
    - Contents: {"state_hash": "<sha256>", "state": <canonical state>}

    With a dir_lock, save() refuses to write unless this process holds it.
    """

    FILENAME = "projection.json"

    def __init__(self, directory: str, dir_lock: Optional[DataDirLock] = None) -> None:
        self.directory = Path(directory)
        self.dir_lock = dir_lock
        self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self.directory / self.FILENAME

    def save(
        self,
        store: ProjectionStore,
        guard: IdempotencyGuard,
        deferred: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        """
        Atomically replace the snapshot.

        Returns:
            State hash of the written snapshot

        Raises:
            DataDirLockedError: The directory lock is not held
        """
        if self.dir_lock is not None:
            self.dir_lock.check()
        state_bytes = serialize_projection(store, guard, deferred)
        state_hash = hashlib.sha256(state_bytes).hexdigest()
        payload = b'{"state":' + state_bytes + b',"state_hash":"' + state_hash.encode("ascii") + b'"}'

        fd, tmp = tempfile.mkstemp(prefix=".snapshot_", dir=str(self.directory))
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

        logger.debug(f"Snapshot written: {state_hash[:16]}... ({len(payload)} bytes)")
        return state_hash

    def load(self) -> Optional[Snapshot]:
        """
        Load and verify the snapshot.

        Returns:
            Snapshot, or None if none was written yet

        Raises:
            IntegrityError: Unreadable file or state hash mismatch
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, "rb") as f:
                doc = json.load(f)
            state = doc["state"]
            expected = doc["state_hash"]
        except (OSError, ValueError, KeyError, TypeError) as ex:
            raise IntegrityError(f"unreadable snapshot {self.path}: {ex}") from ex

        actual = hashlib.sha256(canonical_json_bytes(state)).hexdigest()
        if actual != expected:
            raise IntegrityError(
                f"snapshot hash mismatch: stored {expected[:16]}..., computed {actual[:16]}..."
            )
        if state.get("version") != SNAPSHOT_VERSION:
            raise IntegrityError(f"unsupported snapshot version: {state.get('version')}")

        store = ProjectionStore.from_dict(state.get("projection", {}))
        guard = IdempotencyGuard.from_export(state.get("guard", []))
        logger.info(
            f"Snapshot loaded: {len(store.properties())} properties, "
            f"{len(store.holders())} holders, {len(guard)} event keys"
        )
        return Snapshot(store=store, guard=guard, state_hash=actual, deferred=list(state.get("deferred", [])))
