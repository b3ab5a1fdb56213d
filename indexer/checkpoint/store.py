"""
Per-source checkpoint storage.

A checkpoint is the highest block whose events are fully applied for one
event source. It only moves forward, except through an explicit rewind()
after a detected reorganization.

File layout (FileCheckpointStore):
- one JSON file per source: cp_{source}.json
- written to a temp file, fsynced, then atomically renamed into place
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..core.errors import CheckpointError
from .lock import DataDirLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    """
    Fields:
        source: Event source name
        block_number: Highest fully applied block
        block_hash: Hash of that block when committed (for reorg detection)
    """
    source: str
    block_number: int
    block_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Checkpoint":
        return cls(
            source=str(data["source"]),
            block_number=int(data["block_number"]),
            block_hash=data.get("block_hash"),
        )


class CheckpointStore(ABC):
    """
    Abstract checkpoint store.

    All implementations must guarantee:
    - set_checkpoint never lowers a checkpoint
    - a stored checkpoint is visible to the next get after set returns
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @abstractmethod
    def _load(self, source: str) -> Optional[Checkpoint]:
        ...

    @abstractmethod
    def _save(self, checkpoint: Checkpoint) -> None:
        ...

    @abstractmethod
    def list(self) -> List[Checkpoint]:
        ...

    def get(self, source: str) -> Optional[Checkpoint]:
        with self._lock:
            return self._load(source)

    def get_checkpoint(self, source: str) -> Optional[int]:
        """Highest fully applied block for source, or None if never run."""
        cp = self.get(source)
        return cp.block_number if cp else None

    def set_checkpoint(self, source: str, block_number: int, block_hash: Optional[str] = None) -> Checkpoint:
        """
        Advance the checkpoint for source.

        Raises:
            CheckpointError: block_number is lower than the stored checkpoint
        """
        with self._lock:
            current = self._load(source)
            if current is not None and block_number < current.block_number:
                raise CheckpointError(
                    f"checkpoint for {source} cannot move back from "
                    f"{current.block_number} to {block_number}"
                )
            cp = Checkpoint(source=source, block_number=block_number, block_hash=block_hash)
            self._save(cp)
            return cp

    def rewind(self, source: str, block_number: int) -> Checkpoint:
        """
        Move a checkpoint back (reorg recovery only).

        The block hash is dropped: the rewound block has not been re-verified.
        """
        with self._lock:
            current = self._load(source)
            if current is not None and block_number > current.block_number:
                raise CheckpointError(
                    f"rewind of {source} to {block_number} is ahead of {current.block_number}"
                )
            cp = Checkpoint(source=source, block_number=block_number, block_hash=None)
            self._save(cp)
        logger.warning(f"Checkpoint for {source} rewound to block {block_number}")
        return cp


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self) -> None:
        super().__init__()
        self._checkpoints: Dict[str, Checkpoint] = {}

    def _load(self, source: str) -> Optional[Checkpoint]:
        return self._checkpoints.get(source)

    def _save(self, checkpoint: Checkpoint) -> None:
        self._checkpoints[checkpoint.source] = checkpoint

    def list(self) -> List[Checkpoint]:
        with self._lock:
            return [self._checkpoints[k] for k in sorted(self._checkpoints)]


class FileCheckpointStore(CheckpointStore):
    """
    Checkpoints as small JSON files in a directory.

    Storage format:
    - {directory}/cp_{source}.json
    - Contents: {"source": ..., "block_number": ..., "block_hash": ...}

    With a dir_lock, writes are refused unless this process holds it.
    """

    def __init__(self, directory: str = "checkpoints", dir_lock: Optional[DataDirLock] = None) -> None:
        super().__init__()
        self.directory = Path(directory)
        self.dir_lock = dir_lock
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, source: str) -> Path:
        return self.directory / f"cp_{source}.json"

    def _load(self, source: str) -> Optional[Checkpoint]:
        path = self._path(source)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return Checkpoint.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as ex:
            raise CheckpointError(f"unreadable checkpoint {path}: {ex}") from ex

    def _save(self, checkpoint: Checkpoint) -> None:
        if self.dir_lock is not None:
            self.dir_lock.check()
        path = self._path(checkpoint.source)
        try:
            fd, tmp = tempfile.mkstemp(prefix=".cp_", dir=str(self.directory))
            with os.fdopen(fd, "w") as f:
                json.dump(checkpoint.to_dict(), f, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as ex:
            raise CheckpointError(f"cannot write checkpoint {path}: {ex}") from ex

    def list(self) -> List[Checkpoint]:
        with self._lock:
            out = []
            for path in sorted(self.directory.glob("cp_*.json")):
                source = path.stem[len("cp_"):]
                cp = self._load(source)
                if cp is not None:
                    out.append(cp)
            return out
