"""
DriftDetector: corrects holder balances from the ledger.

Runs out-of-band from the replay path. Each pass selects holders (a random
sample, or every holder touched since the previous thorough pass), reads the
authoritative balance from the ledger and overwrites the projected balance
when they differ.

Authoritative balances are read as of the transfer source's checkpoint block,
the block the projection is known to be complete up to. A correction is a
compare-and-swap on Holder.last_block: if an event touched the holder after
the read, the correction is dropped as stale.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .. import metrics
from ..checkpoint.store import CheckpointStore
from ..core.state import HolderKey
from ..ledger.client import LedgerClient
from ..logging_config import get_logger
from ..store.projection import ProjectionStore

logger = get_logger(__name__, trace_id="reconcile")


@dataclass(frozen=True)
class DriftRecord:
    """Diagnostic record of one detected divergence."""
    property_id: int
    address: str
    projected: int
    authoritative: int
    as_of_block: int
    corrected: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property_id": self.property_id,
            "address": self.address,
            "projected": self.projected,
            "authoritative": self.authoritative,
            "as_of_block": self.as_of_block,
            "corrected": self.corrected,
        }


@dataclass
class DriftReport:
    as_of_block: Optional[int]
    checked: int = 0
    skipped: int = 0
    drift: List[DriftRecord] = field(default_factory=list)

    @property
    def corrected(self) -> List[DriftRecord]:
        return [d for d in self.drift if d.corrected]

    @property
    def stale(self) -> List[DriftRecord]:
        return [d for d in self.drift if not d.corrected]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of_block": self.as_of_block,
            "checked": self.checked,
            "skipped": self.skipped,
            "corrected": len(self.corrected),
            "stale": len(self.stale),
            "drift": [d.to_dict() for d in self.drift],
        }


class DriftDetector:
    """
    Usage:
        detector = DriftDetector(ledger, store, checkpoints, share_address)
        report = detector.reconcile()               # random sample
        report = detector.reconcile(thorough=True)  # all touched holders
    """

    def __init__(
        self,
        ledger: LedgerClient,
        store: ProjectionStore,
        checkpoints: CheckpointStore,
        contract_address: str,
        source: str = "property_share",
        sample_size: int = 50,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.checkpoints = checkpoints
        self.contract_address = contract_address
        self.source = source
        self.sample_size = sample_size
        self._rng = rng or random.Random()

    def select(self, sample_size: Optional[int] = None, thorough: bool = False) -> List[HolderKey]:
        if thorough:
            return self.store.drain_touched()
        keys = [h.key for h in self.store.holders()]
        size = self.sample_size if sample_size is None else sample_size
        if size >= len(keys):
            return keys
        return sorted(self._rng.sample(keys, size))

    def reconcile(self, sample_size: Optional[int] = None, thorough: bool = False) -> DriftReport:
        """
        Run one reconciliation pass.

        Raises:
            LedgerUnavailableError: Ledger retries exhausted; in thorough mode
                the unprocessed holders stay marked for the next pass
        """
        as_of = self.checkpoints.get_checkpoint(self.source)
        report = DriftReport(as_of_block=as_of)
        if as_of is None:
            logger.info(f"Nothing to reconcile: {self.source} has no checkpoint yet")
            return report

        keys = self.select(sample_size, thorough)
        deferred: List[HolderKey] = []
        try:
            for i, key in enumerate(keys):
                try:
                    outcome = self._check(key, as_of, report)
                except Exception:
                    if thorough:
                        deferred.extend(keys[i:])
                    raise
                if outcome is False and thorough:
                    deferred.append(key)
        finally:
            if deferred:
                self.store.touch(deferred)

        logger.info(
            f"Reconciled {report.checked} holders as of block {as_of}: "
            f"{len(report.corrected)} corrected, {len(report.stale)} stale, {report.skipped} skipped"
        )
        return report

    def _check(self, key: HolderKey, as_of: int, report: DriftReport) -> Optional[bool]:
        """
        Returns:
            None if in sync, True if corrected, False if skipped or stale
        """
        property_id, address = key
        holder = self.store.get_holder(property_id, address)
        if holder is None:
            return None
        if holder.last_block > as_of:
            # Projection is ahead of the checkpoint (run in flight)
            report.skipped += 1
            return False

        observed_block = holder.last_block
        observed_balance = holder.balance
        authoritative = self.ledger.get_balance(self.contract_address, address, property_id, as_of)
        report.checked += 1
        if authoritative == observed_balance:
            return None

        with self.store.locks.hold([("holder", property_id, address)]):
            corrected = self.store.compare_and_set_balance(
                property_id, address, observed_block, authoritative, expected_balance=observed_balance
            )

        record = DriftRecord(
            property_id=property_id,
            address=address,
            projected=observed_balance,
            authoritative=authoritative,
            as_of_block=as_of,
            corrected=corrected,
        )
        report.drift.append(record)
        if corrected:
            metrics.track_drift_correction()
            logger.warning(
                f"Drift corrected for holder {address} in property {property_id}: "
                f"{observed_balance} -> {authoritative} (block {as_of})"
            )
        else:
            logger.warning(
                f"Stale drift correction dropped for holder {address} in property {property_id}"
            )
        return corrected
