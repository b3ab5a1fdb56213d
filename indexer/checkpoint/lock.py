"""
Single-writer ownership of a data directory.

Checkpoints and the projection snapshot under one data directory belong to
one process at a time. The owner holds an exclusive flock on
{data_dir}/indexer.lock until it closes; the kernel drops the lock when the
process dies, so a crashed owner never leaves a stale lock behind.

Stores built with a lock refuse to write unless this process holds it.
"""

import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from ..core.errors import DataDirLockedError

logger = logging.getLogger(__name__)


class DataDirLock:
    """
    Exclusive, non-blocking lock on a data directory.

    Usage:
        lock = DataDirLock("/var/lib/indexer")
        with lock:
            ...  # checkpoints and snapshots may be written

    flock locks belong to the open file, so two DataDirLock objects on the
    same directory exclude each other even inside one process.
    """

    FILENAME = "indexer.lock"

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)
        self._fd: Optional[int] = None
        self._mu = threading.Lock()

    @property
    def path(self) -> Path:
        return self.directory / self.FILENAME

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take ownership of the directory.

        Raises:
            DataDirLockedError: Another process (or service) owns it
        """
        with self._mu:
            if self._fd is not None:
                return
            self.directory.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                owner = os.read(fd, 32).decode("ascii", "replace").strip()
                os.close(fd)
                raise DataDirLockedError(
                    f"{self.directory} is in use by another indexer (pid {owner or 'unknown'})"
                )
            except OSError:
                os.close(fd)
                raise
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode("ascii"))
            self._fd = fd
        logger.info(f"Data directory {self.directory} locked by pid {os.getpid()}")

    def release(self) -> None:
        with self._mu:
            fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug(f"Data directory {self.directory} released")

    def check(self) -> None:
        """
        Raises:
            DataDirLockedError: This process does not own the directory
        """
        if self._fd is None:
            raise DataDirLockedError(
                f"{self.directory} is not locked by this process; refusing to write"
            )

    def __enter__(self) -> "DataDirLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
