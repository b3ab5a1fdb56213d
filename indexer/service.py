"""
Indexer service: wires the components together and runs the poll loop.

Startup order:
0. Take the data directory lock (one writer per data directory)
1. Load the projection snapshot (hash-verified) if one exists
2. Restore claimed event keys and deferred events from it
3. Tail every configured source; reconcile drift on its own interval
"""

import logging
import signal
import threading
import time
from typing import Any, Dict, List, Optional

from .checkpoint.lock import DataDirLock
from .checkpoint.snapshot import SnapshotStore
from .checkpoint.store import CheckpointStore, FileCheckpointStore, MemoryCheckpointStore
from .config import IndexerConfig
from .core.errors import IndexerError, LedgerError
from .core.guard import IdempotencyGuard
from .core.projector import Projector
from .decode.abi import default_sources
from .decode.decoder import EventDecoder
from .ledger.client import LedgerClient
from .ledger.retry import RetryingLedger
from .reconcile.drift import DriftDetector, DriftReport
from .replay.coordinator import ReplayCoordinator, RunResult
from .store.projection import ProjectionStore

logger = logging.getLogger(__name__)


class IndexerService:
    """
    One indexer process.

    Usage:
        service = IndexerService.from_config(IndexerConfig.from_env())
        with service:
            service.start()
            service.run_forever()
    """

    def __init__(
        self,
        config: IndexerConfig,
        ledger: LedgerClient,
        checkpoints: Optional[CheckpointStore] = None,
        snapshots: Optional[SnapshotStore] = None,
        dir_lock: Optional[DataDirLock] = None,
    ) -> None:
        self.config = config
        self.dir_lock = dir_lock
        self.ledger = ledger
        self.sources = default_sources(config.addresses)
        self.decoder = EventDecoder(self.sources)
        self.checkpoints = checkpoints or MemoryCheckpointStore()
        self.snapshots = snapshots
        self.store = ProjectionStore()
        self.guard = IdempotencyGuard()
        self._build()
        self._stop = threading.Event()
        self._last_reconcile = 0.0

    @classmethod
    def from_config(cls, config: IndexerConfig, ledger: Optional[LedgerClient] = None) -> "IndexerService":
        """
        Build a service for live use.

        Without an explicit ledger, a rate-limited web3 JSON-RPC client is
        created from config.rpc_url.
        """
        if ledger is None:
            from .ledger.web3_client import Web3LedgerClient

            config.validate()
            ledger = Web3LedgerClient(config.rpc_url)
        ledger = RetryingLedger(
            ledger,
            max_attempts=config.ledger_max_attempts,
            backoff_seconds=config.ledger_backoff_seconds,
            max_backoff_seconds=config.ledger_max_backoff_seconds,
            max_concurrency=config.ledger_max_concurrency,
            min_interval_seconds=config.ledger_min_interval_seconds,
        )
        dir_lock = DataDirLock(config.data_dir)
        return cls(
            config,
            ledger,
            checkpoints=FileCheckpointStore(config.checkpoint_dir, dir_lock=dir_lock),
            snapshots=SnapshotStore(config.snapshot_dir, dir_lock=dir_lock),
            dir_lock=dir_lock,
        )

    def _build(self) -> None:
        self.projector = Projector(self.store)
        self.coordinator = ReplayCoordinator(
            self.ledger,
            self.decoder,
            self.sources,
            self.guard,
            self.projector,
            self.checkpoints,
            snapshots=self.snapshots,
            start_block=self.config.start_block,
            confirmations=self.config.confirmations,
            batch_size=self.config.batch_size,
            max_reorg_depth=self.config.max_reorg_depth,
            reorg_protection=self.config.reorg_protection,
        )
        self.drift = DriftDetector(
            self.ledger,
            self.store,
            self.checkpoints,
            self.config.property_share_address,
            sample_size=self.config.reconcile_sample_size,
        )

    def start(self, exclusive: bool = True) -> None:
        """
        Take the data directory and restore state from the last snapshot.

        Args:
            exclusive: Lock the data directory for writing. A non-exclusive
                service only reads; any commit it attempts is refused.

        Raises:
            DataDirLockedError: exclusive and another service owns the directory
        """
        if exclusive and self.dir_lock is not None:
            self.dir_lock.acquire()
        try:
            self._restore()
        except BaseException:
            self.close()
            raise

    def _restore(self) -> None:
        if self.snapshots is None:
            return
        snapshot = self.snapshots.load()
        if snapshot is None:
            logger.info("No snapshot found, starting from an empty projection")
            return
        self.store = snapshot.store
        self.guard = snapshot.guard
        self._build()
        self.coordinator.restore_deferred(snapshot.deferred)
        logger.info(f"Resumed from snapshot {snapshot.state_hash[:16]}...")

    def close(self) -> None:
        """Release the data directory."""
        if self.dir_lock is not None:
            self.dir_lock.release()

    def __enter__(self) -> "IndexerService":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # Operations

    def tail_once(self) -> List[RunResult]:
        return self.coordinator.tail_once()

    def backfill(self, from_block: int, to_block: int, sources=None) -> List[RunResult]:
        return self.coordinator.backfill(from_block, to_block, sources)

    def save_snapshot(self) -> Optional[str]:
        return self.coordinator.save_snapshot()

    def reconcile(self, sample_size: Optional[int] = None, thorough: bool = False) -> DriftReport:
        if not self.config.property_share_address:
            raise IndexerError("property_share address is not configured")
        return self.drift.reconcile(sample_size=sample_size, thorough=thorough)

    def health(self) -> Dict[str, Any]:
        """
        Sync status of every source.

        status is "degraded" when any source is more than max_lag_blocks
        behind head, or has never run.
        """
        statuses = self.coordinator.sync_status()
        lagging = [
            s.source for s in statuses
            if s.behind_by is None or s.behind_by > self.config.max_lag_blocks
        ]
        return {
            "status": "degraded" if lagging else "ok",
            "lagging": lagging,
            "max_lag_blocks": self.config.max_lag_blocks,
            "deferred": len(self.coordinator.deferred_entries()),
            "sources": [s.to_dict() for s in statuses],
        }

    # Loop

    def stop(self, *_: Any) -> None:
        logger.info("Stop requested")
        self._stop.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.stop)
        signal.signal(signal.SIGINT, self.stop)

    def run_once(self) -> List[RunResult]:
        """One poll iteration: tail, then reconcile if the interval elapsed."""
        results: List[RunResult] = []
        try:
            results = self.tail_once()
        except LedgerError as e:
            logger.error(f"Tail failed, retrying next poll: {e}")
        except IndexerError as e:
            logger.warning(f"Tail skipped: {e}")

        now = time.monotonic()
        if (
            self.config.property_share_address
            and now - self._last_reconcile >= self.config.reconcile_interval_seconds
        ):
            self._last_reconcile = now
            try:
                self.drift.reconcile()
            except LedgerError as e:
                logger.error(f"Reconcile failed: {e}")
        return results

    def run_forever(self) -> None:
        logger.info(f"Indexing {', '.join(s.name for s in self.sources)}")
        while not self._stop.is_set():
            results = self.run_once()
            caught_up = all(r.to_block - r.from_block + 1 < self.config.batch_size for r in results)
            if caught_up:
                self._stop.wait(self.config.poll_interval_seconds)
        logger.info("Indexer stopped")
