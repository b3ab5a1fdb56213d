"""
Tests for DriftDetector.

Critical tests:
1. Divergent balances are overwritten from the ledger
2. Ledger is read as of the checkpoint block
3. Stale corrections never clobber newer updates
4. Thorough mode drains touched holders
"""

import random

from indexer.reconcile.drift import DriftDetector
from indexer.tests import fixtures as fx


def _indexed(logs, head=20):
    ix = fx.build_indexer()
    for log in logs:
        ix.ledger.add_log(log)
    ix.ledger.set_head(head)
    ix.coordinator.run(fx.ALL_SOURCES, 1, 10)
    return ix


def _history():
    return [
        fx.property_created(1, block=2),
        fx.transfer_single(fx.SENTINEL, fx.ALICE, 1, 100, block=3),
        fx.transfer_single(fx.ALICE, fx.BOB, 1, 40, block=4),
    ]


def _detector(ix, **kwargs):
    kwargs.setdefault("rng", random.Random(1))
    return DriftDetector(ix.ledger, ix.store, ix.checkpoints, fx.PROPERTY_SHARE, **kwargs)


def test_no_drift_when_ledger_agrees():
    ix = _indexed(_history())
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 60, block_number=4)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=4)

    report = _detector(ix).reconcile()

    assert report.checked == 2
    assert report.drift == []
    assert report.as_of_block == 10


def test_drift_corrected_from_ledger():
    """A missed event shows up as drift and is overwritten."""
    ix = _indexed(_history())
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 55, block_number=4)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=4)

    report = _detector(ix).reconcile()

    assert len(report.corrected) == 1
    record = report.corrected[0]
    assert (record.address, record.projected, record.authoritative) == (fx.ALICE, 60, 55)
    assert ix.store.get_holder(1, fx.ALICE).balance == 55
    assert ix.store.get_holder(1, fx.BOB).balance == 40


def test_ledger_read_as_of_checkpoint_block():
    """Balances newer than the checkpoint are not compared."""
    ix = _indexed(_history())
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 60, block_number=4)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=4)
    # Head has moved on past the checkpoint (block 10)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 0, block_number=15)

    report = _detector(ix).reconcile()

    assert report.drift == []
    assert ix.store.get_holder(1, fx.ALICE).balance == 60


def test_stale_correction_dropped():
    """If an event lands between the read and the write, the CAS fails."""
    ix = _indexed(_history())
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 0, block_number=4)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=4)
    ix.ledger.add_log(fx.transfer_single(fx.SENTINEL, fx.ALICE, 1, 5, block=11))

    class RacingLedger:
        """Applies the next range while the drift read is in flight."""

        def __init__(self, inner):
            self.inner = inner
            self.raced = False

        def get_balance(self, address, holder, property_id, block_number=None):
            value = self.inner.get_balance(address, holder, property_id, block_number)
            if holder == fx.ALICE and not self.raced:
                self.raced = True
                ix.coordinator.run(fx.ALL_SOURCES, 11, 11)
            return value

    detector = DriftDetector(RacingLedger(ix.ledger), ix.store, ix.checkpoints, fx.PROPERTY_SHARE)
    report = detector.reconcile()

    assert len(report.stale) == 1
    assert report.corrected == []
    assert ix.store.get_holder(1, fx.ALICE).balance == 65


def test_holder_ahead_of_checkpoint_skipped():
    """A holder touched beyond the checkpoint is left for a later pass."""
    ix = _indexed(_history() + [fx.transfer_single(fx.SENTINEL, fx.ALICE, 1, 1, block=6)])
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 999, block_number=4)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=4)
    # Simulate an in-flight run: the checkpoint is behind ALICE
    ix.checkpoints.rewind("property_share", 5)

    report = _detector(ix).reconcile()

    assert report.skipped == 1
    assert report.checked == 1
    assert report.drift == []
    assert ix.store.get_holder(1, fx.ALICE).balance == 61


def test_sample_size_limits_checks():
    logs = [fx.property_created(1, block=2)] + [
        fx.transfer_single(fx.SENTINEL, "0x%040x" % (i + 1), 1, 1, block=3, log_index=i)
        for i in range(10)
    ]
    ix = _indexed(logs)

    report = _detector(ix, sample_size=3).reconcile()
    assert report.checked == 3


def test_thorough_mode_drains_touched():
    """Thorough pass checks every touched holder once."""
    ix = _indexed(_history())
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 60, block_number=4)
    ix.ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=4)
    detector = _detector(ix, sample_size=0)

    first = detector.reconcile(thorough=True)
    second = detector.reconcile(thorough=True)

    assert first.checked == 2
    assert second.checked == 0


def test_nothing_to_reconcile_before_first_run():
    ix = fx.build_indexer()
    report = _detector(ix).reconcile()
    assert report.as_of_block is None
    assert report.checked == 0
