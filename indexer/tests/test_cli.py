"""
Tests for the indexer CLI.

Commands run against an in-memory ledger; checkpoints and snapshots go to a
temporary data directory, so state carries over between invocations.
"""

import json

import pytest
from typer.testing import CliRunner

from cli.main import app
from indexer.checkpoint.lock import DataDirLock
from indexer.ledger.memory import MemoryLedger
from indexer.tests import fixtures as fx

runner = CliRunner()


@pytest.fixture
def ledger(monkeypatch, tmp_path):
    ledger = MemoryLedger()
    for log in [
        fx.property_created(1, block=1),
        fx.transfer_single(fx.SENTINEL, fx.ALICE, 1, 100, block=2),
        fx.transfer_single(fx.ALICE, fx.BOB, 1, 40, block=3),
        fx.rent_deposited(1, 1000, 25, 975, block=4),
        fx.listing_created(3, fx.BOB, 1, 10, 120, block=5),
        fx.purchase_executed(3, fx.CAROL, fx.BOB, 1, 4, 480, block=5, log_index=1),
    ]:
        ledger.add_log(log)

    monkeypatch.setenv("INDEXER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("INDEXER_PROPERTY_SHARE_ADDRESS", fx.PROPERTY_SHARE)
    monkeypatch.setenv("INDEXER_REVENUE_SPLITTER_ADDRESS", fx.REVENUE_SPLITTER)
    monkeypatch.setenv("INDEXER_MARKETPLACE_ADDRESS", fx.MARKETPLACE)
    monkeypatch.setenv("INDEXER_CONFIRMATIONS", "0")
    monkeypatch.setenv("INDEXER_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("INDEXER_LOG_FORMAT", "text")
    monkeypatch.delenv("INDEXER_BATCH_SIZE", raising=False)
    return ledger


def _run(ledger, args):
    """Invoke the CLI with the in-memory ledger injected as the context object."""
    return runner.invoke(app, args, obj={"ledger": ledger})


def _json(result):
    assert result.output, result
    return json.loads(result.output)


def test_version_json():
    result = runner.invoke(app, ["version", "--json"])

    assert result.exit_code == 0
    assert _json(result)["version"]


def test_backfill_json(ledger):
    result = _run(ledger, ["backfill", "--from", "1", "--to", "5", "--json"])

    assert result.exit_code == 0, result.output
    payload = _json(result)
    assert payload["success"] is True
    [run] = payload["ranges"]
    assert (run["from_block"], run["to_block"], run["applied"]) == (1, 5, 6)


def test_backfill_then_inspect(ledger):
    _run(ledger, ["backfill", "--from", "1", "--to", "5"])

    prop = _json(_run(ledger, ["inspect", "property", "1", "--holders", "--json"]))
    assert prop["property"]["total_deposited"] == 975
    assert [h["balance"] for h in prop["holders"]] == [60, 40]

    holder = _json(_run(ledger, ["inspect", "holder", "1", fx.BOB, "--json"]))
    assert holder["holder"]["balance"] == 40

    listings = _json(_run(ledger, ["inspect", "listings", "--json"]))
    assert listings["count"] == 1
    assert listings["listings"][0]["seller"] == fx.BOB

    listing = _json(_run(ledger, ["inspect", "listing", "3", "--json"]))
    assert (listing["listing"]["state"], listing["listing"]["remaining_amount"]) == ("Active", 6)
    assert [(p["buyer"], p["amount"]) for p in listing["purchases"]] == [(fx.CAROL, 4)]


def test_inspect_missing_exits_1(ledger):
    result = _run(ledger, ["inspect", "listing", "42", "--json"])

    assert result.exit_code == 1
    assert _json(result)["success"] is False


def test_backfill_same_range_twice_is_rejected(ledger):
    _run(ledger, ["backfill", "--from", "1", "--to", "5"])
    result = _run(ledger, ["backfill", "--from", "1", "--to", "5", "--json"])

    assert result.exit_code == 2
    assert _json(result)["type"] == "RangeOverlapError"


def test_backfill_inverted_range_exits_2(ledger):
    result = _run(ledger, ["backfill", "--from", "9", "--to", "3"])

    assert result.exit_code == 2
    assert "Error" in result.output


def test_bad_config_exits_2(ledger, monkeypatch):
    monkeypatch.setenv("INDEXER_BATCH_SIZE", "many")

    result = _run(ledger, ["tail", "--once", "--json"])

    assert result.exit_code == 2
    assert _json(result)["type"] == "ConfigError"


def test_tail_once_then_status(ledger):
    tail = _run(ledger, ["tail", "--once", "--json"])
    assert tail.exit_code == 0, tail.output
    assert sum(r["applied"] for r in _json(tail)["ranges"]) == 6

    status = _run(ledger, ["status", "--json"])
    assert status.exit_code == 0, status.output
    payload = _json(status)
    assert payload["status"] == "ok"
    assert payload["projection"]["holders"] == 2
    assert {s["source"]: s["checkpoint"] for s in payload["sources"]} == {
        "marketplace": 5,
        "property_share": 5,
        "revenue_splitter": 5,
    }


def test_status_degraded_before_first_run(ledger):
    result = _run(ledger, ["status", "--json"])

    assert result.exit_code == 1
    assert _json(result)["status"] == "degraded"


def test_reconcile_corrects_and_persists(ledger):
    _run(ledger, ["backfill", "--from", "1", "--to", "5"])
    ledger.set_balance(fx.PROPERTY_SHARE, fx.ALICE, 1, 59, block_number=3)
    ledger.set_balance(fx.PROPERTY_SHARE, fx.BOB, 1, 40, block_number=3)

    result = _run(ledger, ["reconcile", "--all", "--json"])
    assert result.exit_code == 0, result.output
    report = _json(result)
    assert report["corrected"] == 1
    assert report["drift"][0]["authoritative"] == 59

    holder = _json(_run(ledger, ["inspect", "holder", "1", fx.ALICE, "--json"]))
    assert holder["holder"]["balance"] == 59

    verify = _run(ledger, ["verify", "--json"])
    assert verify.exit_code == 1
    assert _json(verify)["mismatches"][0]["field"] == "balance"


def test_verify_clean_projection(ledger):
    _run(ledger, ["backfill", "--from", "1", "--to", "5"])

    result = _run(ledger, ["verify", "--json"])

    assert result.exit_code == 0
    payload = _json(result)
    assert payload["success"] is True
    assert payload["checked_holders"] == 2


def test_writing_commands_refused_while_data_dir_owned(ledger, tmp_path):
    """A running daemon owns the data directory; one-shot writers exit 2 and change nothing."""
    _run(ledger, ["backfill", "--from", "1", "--to", "3"])

    with DataDirLock(str(tmp_path)):
        backfill = _run(ledger, ["backfill", "--from", "4", "--to", "5", "--json"])
        assert backfill.exit_code == 2
        assert _json(backfill)["type"] == "DataDirLockedError"

        tail = _run(ledger, ["tail", "--once", "--json"])
        assert tail.exit_code == 2

        status = _run(ledger, ["status", "--json"])
        assert status.exit_code == 0, status.output
        assert _json(status)["sources"][0]["checkpoint"] == 3

    prop = _json(_run(ledger, ["inspect", "property", "1", "--json"]))
    assert prop["property"]["total_deposited"] == 0

    resumed = _run(ledger, ["backfill", "--from", "4", "--to", "5", "--json"])
    assert resumed.exit_code == 0, resumed.output
