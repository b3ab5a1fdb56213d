"""
Tests for IndexerConfig.
"""

import pytest

from indexer.config import IndexerConfig
from indexer.core.errors import ConfigError

SHARE = "0x" + "a1" * 20


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "INDEXER_RPC_URL",
        "INDEXER_PROPERTY_SHARE_ADDRESS",
        "INDEXER_REVENUE_SPLITTER_ADDRESS",
        "INDEXER_MARKETPLACE_ADDRESS",
        "INDEXER_START_BLOCK",
        "INDEXER_BATCH_SIZE",
        "INDEXER_CONFIRMATIONS",
        "INDEXER_REORG_PROTECTION",
        "INDEXER_DATA_DIR",
        "INDEXER_LOG_LEVEL",
        "INDEXER_LOG_FORMAT",
        "METRICS_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = IndexerConfig.from_env()

    assert config.start_block == 0
    assert config.batch_size == 1000
    assert config.confirmations == 3
    assert config.max_reorg_depth == 100
    assert config.reorg_protection is False
    assert config.log_format == "json"
    assert config.metrics_enabled is False


def test_from_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("INDEXER_RPC_URL", " http://node:8545 ")
    monkeypatch.setenv("INDEXER_PROPERTY_SHARE_ADDRESS", SHARE)
    monkeypatch.setenv("INDEXER_START_BLOCK", "1200")
    monkeypatch.setenv("INDEXER_REORG_PROTECTION", "Yes")
    monkeypatch.setenv("INDEXER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("INDEXER_LOG_LEVEL", "debug")
    monkeypatch.setenv("INDEXER_LOG_FORMAT", "TEXT")

    config = IndexerConfig.from_env()

    assert config.rpc_url == "http://node:8545"
    assert config.start_block == 1200
    assert config.reorg_protection is True
    assert config.log_level == "DEBUG"
    assert config.log_format == "text"
    assert config.addresses["property_share"] == SHARE
    assert config.addresses["marketplace"] == ""
    assert config.checkpoint_dir == str(tmp_path / "checkpoints")
    assert config.snapshot_dir == str(tmp_path / "snapshots")
    config.validate()


def test_bad_integer_rejected(monkeypatch):
    monkeypatch.setenv("INDEXER_BATCH_SIZE", "lots")

    with pytest.raises(ConfigError, match="INDEXER_BATCH_SIZE"):
        IndexerConfig.from_env()


def test_validate_reports_every_problem():
    config = IndexerConfig(
        marketplace_address="0xnothex",
        batch_size=0,
        confirmations=-1,
        log_format="xml",
    )

    with pytest.raises(ConfigError) as exc:
        config.validate()

    message = str(exc.value)
    assert "INDEXER_RPC_URL" in message
    assert "marketplace address" in message
    assert "INDEXER_BATCH_SIZE" in message
    assert "INDEXER_CONFIRMATIONS" in message
    assert "INDEXER_LOG_FORMAT" in message


def test_validate_requires_an_address():
    with pytest.raises(ConfigError, match="at least one contract address"):
        IndexerConfig(rpc_url="http://node:8545").validate()
