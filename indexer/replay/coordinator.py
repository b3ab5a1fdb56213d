"""
ReplayCoordinator: drives decode -> guard -> projector over block ranges.

A run is range-atomic with respect to the checkpoint: every log in
[from_block, to_block] of every requested source is fetched, decoded and
applied in global ledger order before any checkpoint moves. A failure
anywhere before that point leaves the checkpoints untouched, and the range is
replayed in full next time (the guard makes the replay a no-op for events
already applied).

Used for live-tailing (tail_once) and historical backfill (backfill).
"""

import logging
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .. import metrics
from ..checkpoint.snapshot import SnapshotStore
from ..checkpoint.store import CheckpointStore
from ..core.errors import (
    DecodeError,
    InvalidTransitionError,
    MissingDependencyError,
    RangeOverlapError,
    RunInProgressError,
)
from ..core.events import EventKey, RawLog
from ..core.guard import IdempotencyGuard
from ..core.projector import Projector
from ..decode.abi import Source
from ..decode.decoder import EventDecoder
from ..ledger.client import LedgerClient
from ..logging_config import get_logger

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
DEFERRED = "missing_dependency"
INVALID = "invalid_transition"
DECODE_ERROR = "decode_error"

# Blocks behind head to start from when start_block is 0
NEW_EVENTS_LOOKBACK = 10


@dataclass
class RunResult:
    """
    Outcome of one committed range.

    Fields:
        sources: Sources processed together in this range
        from_block / to_block: Inclusive range
        fetched: Raw logs returned by the ledger
        applied: Events applied to the projection
        duplicates: Events rejected by the idempotency guard
        decode_errors: Recognized logs that failed to decode
        deferred: Events parked for a missing dependency
        invalid: Events rejected as illegal transitions
        resolved: Previously deferred events applied at the end of the run
        state_hash: Snapshot hash written for this range (if snapshots enabled)
    """
    sources: Tuple[str, ...]
    from_block: int
    to_block: int
    fetched: int = 0
    applied: int = 0
    duplicates: int = 0
    decode_errors: int = 0
    deferred: int = 0
    invalid: int = 0
    resolved: int = 0
    state_hash: Optional[str] = None

    def count(self, outcome: str) -> None:
        if outcome == APPLIED:
            self.applied += 1
        elif outcome == DUPLICATE:
            self.duplicates += 1
        elif outcome == DEFERRED:
            self.deferred += 1
        elif outcome == INVALID:
            self.invalid += 1
        elif outcome == DECODE_ERROR:
            self.decode_errors += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": list(self.sources),
            "from_block": self.from_block,
            "to_block": self.to_block,
            "fetched": self.fetched,
            "applied": self.applied,
            "duplicates": self.duplicates,
            "decode_errors": self.decode_errors,
            "deferred": self.deferred,
            "invalid": self.invalid,
            "resolved": self.resolved,
            "state_hash": self.state_hash,
        }


@dataclass
class SourceStatus:
    source: str
    address: str
    checkpoint: Optional[int]
    head: int
    behind_by: Optional[int]
    block_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "address": self.address,
            "checkpoint": self.checkpoint,
            "head": self.head,
            "behind_by": self.behind_by,
            "block_hash": self.block_hash,
        }


@dataclass
class _Decoded:
    event: Any
    source: str
    raw: RawLog = field(repr=False)


class ReplayCoordinator:
    """
    Range runner for a fixed set of event sources.

    Usage:
        coordinator = ReplayCoordinator(ledger, decoder, sources, guard, projector, checkpoints)
        coordinator.run("property_share", 100, 200)
        coordinator.tail_once()
    """

    def __init__(
        self,
        ledger: LedgerClient,
        decoder: EventDecoder,
        sources: Sequence[Source],
        guard: IdempotencyGuard,
        projector: Projector,
        checkpoints: CheckpointStore,
        snapshots: Optional[SnapshotStore] = None,
        start_block: int = 0,
        confirmations: int = 3,
        batch_size: int = 1000,
        max_reorg_depth: int = 100,
        reorg_protection: bool = False,
    ) -> None:
        self.ledger = ledger
        self.decoder = decoder
        self.sources: Dict[str, Source] = {s.name: s for s in sources}
        self.guard = guard
        self.projector = projector
        self.checkpoints = checkpoints
        self.snapshots = snapshots
        self.start_block = start_block
        self.confirmations = confirmations
        self.batch_size = batch_size
        self.max_reorg_depth = max_reorg_depth
        self.reorg_protection = reorg_protection
        self._run_locks = {name: threading.Lock() for name in self.sources}
        # Held across claim, apply and defer of one event, and across a
        # snapshot, so a snapshot never sees a key claimed but not applied
        self._commit_lock = threading.RLock()
        # str(EventKey) -> {"source", "key", "raw"}
        self._deferred: Dict[str, Dict[str, Any]] = {}
        self._deferred_lock = threading.Lock()

    # Run

    def run(self, sources: Union[str, Iterable[str]], from_block: int, to_block: int) -> RunResult:
        """
        Apply every event of the given sources in [from_block, to_block].

        Several sources are merged into one stream ordered by
        (block, transaction index, log index, item index).

        Raises:
            RunInProgressError: Another run holds one of the sources
            RangeOverlapError: from_block is not after a source's checkpoint
            LedgerUnavailableError: Ledger retries exhausted (nothing committed)
        """
        names = (sources,) if isinstance(sources, str) else tuple(sorted(set(sources)))
        if not names:
            raise ValueError("no sources given")
        for name in names:
            if name not in self.sources:
                raise ValueError(f"unknown source: {name}")
        if from_block > to_block:
            raise ValueError(f"empty range [{from_block}, {to_block}]")

        label = "+".join(names)
        log = get_logger(__name__, trace_id=label)

        with ExitStack() as stack:
            for name in names:
                lock = self._run_locks[name]
                if not lock.acquire(blocking=False):
                    raise RunInProgressError(f"a run for {name} is already in progress")
                stack.callback(lock.release)

            for name in names:
                cp = self.checkpoints.get_checkpoint(name)
                if cp is not None and from_block <= cp:
                    raise RangeOverlapError(
                        f"{name}: range starting at {from_block} overlaps checkpoint {cp}"
                    )

            with metrics.track_range_duration(label):
                result = self._run_locked(names, from_block, to_block, log)

        log.info(
            f"Committed [{from_block}, {to_block}]: {result.applied} applied, "
            f"{result.duplicates} duplicate, {result.deferred} deferred, "
            f"{result.invalid} invalid, {result.decode_errors} undecodable"
        )
        return result

    def _run_locked(
        self, names: Tuple[str, ...], from_block: int, to_block: int, log: logging.LoggerAdapter
    ) -> RunResult:
        result = RunResult(sources=names, from_block=from_block, to_block=to_block)

        # Fetch everything before mutating anything
        raws: List[Tuple[str, RawLog]] = []
        for name in names:
            source = self.sources[name]
            for raw in self.ledger.get_logs(source.address, source.topics, from_block, to_block):
                raws.append((name, raw))
        result.fetched = len(raws)
        block_hash = self.ledger.get_block_hash(to_block) if self.reorg_protection else None

        stream: List[_Decoded] = []
        for name, raw in raws:
            stream.extend(self._decode(name, raw, result, log))
        stream.sort(key=lambda d: d.event.meta.order)

        for item in stream:
            result.count(self._admit(item, log))

        result.resolved = self.replay_deferred()

        result.state_hash = self.save_snapshot()
        for name in names:
            self.checkpoints.set_checkpoint(name, to_block, block_hash)
            metrics.set_checkpoint_block(name, to_block)
        return result

    def _decode(self, source: str, raw: RawLog, result: Optional[RunResult], log) -> List[_Decoded]:
        try:
            events = self.decoder.decode(raw)
        except DecodeError as ex:
            log.warning(f"Skipping undecodable log {raw.transaction_hash}-{raw.log_index}: {ex}")
            metrics.track_event_skipped(DECODE_ERROR)
            if result is not None:
                result.count(DECODE_ERROR)
            return []
        return [_Decoded(event=ev, source=source, raw=raw) for ev in events]

    def save_snapshot(self) -> Optional[str]:
        """
        Write projection, guard and deferred events as of one instant.

        Returns:
            State hash, or None when snapshots are disabled
        """
        if self.snapshots is None:
            return None
        with self._commit_lock:
            return self.snapshots.save(self.projector.store, self.guard, self.deferred_entries())

    def _admit(self, item: _Decoded, log) -> str:
        """Guard then apply one event; returns the outcome."""
        with self._commit_lock:
            return self._admit_locked(item, log)

    def _admit_locked(self, item: _Decoded, log) -> str:
        event = item.event
        key = event.meta.key
        if not self.guard.try_claim(key):
            metrics.track_event_skipped(DUPLICATE)
            return DUPLICATE

        try:
            self.projector.apply(event)
        except MissingDependencyError as ex:
            self.guard.release(key)
            self._defer(item)
            metrics.track_event_skipped(DEFERRED)
            log.warning(f"Deferred {type(event).__name__} {key}: {ex}")
            return DEFERRED
        except InvalidTransitionError as ex:
            metrics.track_event_skipped(INVALID)
            log.warning(f"Ignored {type(event).__name__} {key}: {ex}")
            return INVALID

        with self._deferred_lock:
            self._deferred.pop(str(key), None)
        return APPLIED

    # Deferred events

    def _defer(self, item: _Decoded) -> None:
        key = str(item.event.meta.key)
        with self._deferred_lock:
            self._deferred[key] = {"source": item.source, "key": key, "raw": item.raw.to_dict()}

    def deferred_entries(self) -> List[Dict[str, Any]]:
        with self._deferred_lock:
            return [self._deferred[k] for k in sorted(self._deferred)]

    def restore_deferred(self, entries: Iterable[Dict[str, Any]]) -> None:
        """Reload parked events (from a snapshot)."""
        with self._deferred_lock:
            for entry in entries:
                self._deferred[entry["key"]] = dict(entry)

    def _pending(self) -> List[_Decoded]:
        entries = self.deferred_entries()
        pending: List[_Decoded] = []
        for entry in entries:
            raw = RawLog.from_dict(entry["raw"])
            wanted = EventKey.parse(entry["key"])
            for item in self._decode(entry["source"], raw, None, logger):
                if item.event.meta.key == wanted:
                    pending.append(item)
        pending.sort(key=lambda d: d.event.meta.order)
        return pending

    def replay_deferred(self) -> int:
        """
        Retry parked events in ledger order until no further progress.

        Returns:
            Number of deferred events applied
        """
        resolved = 0
        progress = True
        while progress:
            progress = False
            for item in self._pending():
                outcome = self._admit(item, logger)
                if outcome == APPLIED:
                    resolved += 1
                    progress = True
                elif outcome != DEFERRED:
                    # Duplicate or illegal: it will never apply
                    with self._deferred_lock:
                        self._deferred.pop(str(item.event.meta.key), None)
        if resolved:
            logger.info(f"Applied {resolved} deferred events, {len(self._deferred)} still waiting")
        return resolved

    # Reorg handling

    def rewind(self, source: str) -> int:
        """
        Lower a source's checkpoint by max_reorg_depth blocks.

        The projector has no undo: the rewound range is replayed and events
        already claimed by the guard stay applied. Events that only exist on
        the new branch are applied; balances left wrong by orphaned events are
        corrected by the reconciler.

        Returns:
            New checkpoint block
        """
        lock = self._run_locks[source]
        if not lock.acquire(blocking=False):
            raise RunInProgressError(f"a run for {source} is already in progress")
        try:
            current = self.checkpoints.get_checkpoint(source)
            if current is None:
                return -1
            floor = max(self.start_block - 1, 0)
            target = max(current - self.max_reorg_depth, floor)
            self.checkpoints.rewind(source, target)
            metrics.set_checkpoint_block(source, target)
            get_logger(__name__, trace_id=source).warning(
                f"Reorg rewind from {current} to {target}"
            )
            return target
        finally:
            lock.release()

    def check_reorg(self, source: str) -> bool:
        """
        Compare the checkpoint's stored block hash with the ledger.

        Returns:
            True if a reorg was detected and the checkpoint rewound
        """
        if not self.reorg_protection:
            return False
        cp = self.checkpoints.get(source)
        if cp is None or cp.block_hash is None:
            return False
        current = self.ledger.get_block_hash(cp.block_number)
        if current.lower() == cp.block_hash.lower():
            return False
        get_logger(__name__, trace_id=source).warning(
            f"Block {cp.block_number} hash changed: {cp.block_hash} -> {current}"
        )
        self.rewind(source)
        return True

    # Scheduling

    def initial_block(self, head: int) -> int:
        """First block to index for a source that has never run."""
        if self.start_block > 0:
            return self.start_block
        return max(head - NEW_EVENTS_LOOKBACK, 0)

    def next_from(self, source: str, head: int) -> int:
        cp = self.checkpoints.get_checkpoint(source)
        return cp + 1 if cp is not None else self.initial_block(head)

    def tail_once(self) -> List[RunResult]:
        """
        Process at most one batch per source, up to head - confirmations.

        Sources that are at the same position are run together so their
        events are merged in ledger order.
        """
        head = self.ledger.get_block_number()
        safe_head = head - self.confirmations

        for name in self.sources:
            self.check_reorg(name)

        groups: Dict[int, List[str]] = {}
        for name in self.sources:
            groups.setdefault(self.next_from(name, head), []).append(name)

        results = []
        for from_block in sorted(groups):
            to_block = min(from_block + self.batch_size - 1, safe_head)
            if to_block < from_block:
                continue
            results.append(self.run(groups[from_block], from_block, to_block))
        return results

    def backfill(
        self, from_block: int, to_block: int, sources: Optional[Iterable[str]] = None
    ) -> List[RunResult]:
        """
        Historical replay of [from_block, to_block] in batch_size ranges.

        The checkpoint advances after each range, so an interrupted backfill
        resumes from the last completed range.
        """
        if from_block > to_block:
            raise ValueError(f"invalid range: from_block {from_block} > to_block {to_block}")
        names = tuple(sorted(sources)) if sources else tuple(sorted(self.sources))
        results = []
        start = from_block
        while start <= to_block:
            end = min(start + self.batch_size - 1, to_block)
            results.append(self.run(names, start, end))
            start = end + 1
        return results

    def sync_status(self) -> List[SourceStatus]:
        head = self.ledger.get_block_number()
        statuses = []
        for name in sorted(self.sources):
            cp = self.checkpoints.get(name)
            block = cp.block_number if cp else None
            statuses.append(
                SourceStatus(
                    source=name,
                    address=self.sources[name].address,
                    checkpoint=block,
                    head=head,
                    behind_by=(head - block) if block is not None else None,
                    block_hash=cp.block_hash if cp else None,
                )
            )
        return statuses
