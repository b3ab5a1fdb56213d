"""
Durable indexing progress: per-source checkpoints and projection snapshots.
"""

from .lock import DataDirLock
from .snapshot import Snapshot, SnapshotStore, compute_state_hash, projection_hash, serialize_projection
from .store import Checkpoint, CheckpointStore, FileCheckpointStore, MemoryCheckpointStore

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "DataDirLock",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    "Snapshot",
    "SnapshotStore",
    "compute_state_hash",
    "projection_hash",
    "serialize_projection",
]
