"""
Indexer configuration from environment variables.

Every setting has a default except the RPC endpoint and contract addresses,
which are only required for live use (see validate()).
"""

import os
from dataclasses import dataclass
from typing import Dict, List

from eth_utils import is_address

from .core.errors import ConfigError

_TRUE = ("1", "true", "yes", "on")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as ex:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from ex


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as ex:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from ex


@dataclass
class IndexerConfig:
    rpc_url: str = ""
    property_share_address: str = ""
    revenue_splitter_address: str = ""
    marketplace_address: str = ""
    start_block: int = 0
    poll_interval_seconds: float = 5.0
    batch_size: int = 1000
    confirmations: int = 3
    max_reorg_depth: int = 100
    reorg_protection: bool = False
    data_dir: str = "/var/lib/indexer"
    reconcile_interval_seconds: float = 300.0
    reconcile_sample_size: int = 50
    max_lag_blocks: int = 1000
    ledger_max_attempts: int = 5
    ledger_backoff_seconds: float = 0.5
    ledger_max_backoff_seconds: float = 30.0
    ledger_max_concurrency: int = 4
    ledger_min_interval_seconds: float = 0.0
    log_level: str = "INFO"
    log_format: str = "json"
    metrics_enabled: bool = False
    metrics_port: int = 8080

    @staticmethod
    def from_env() -> "IndexerConfig":
        return IndexerConfig(
            rpc_url=os.getenv("INDEXER_RPC_URL", "").strip(),
            property_share_address=os.getenv("INDEXER_PROPERTY_SHARE_ADDRESS", "").strip(),
            revenue_splitter_address=os.getenv("INDEXER_REVENUE_SPLITTER_ADDRESS", "").strip(),
            marketplace_address=os.getenv("INDEXER_MARKETPLACE_ADDRESS", "").strip(),
            start_block=_env_int("INDEXER_START_BLOCK", "0"),
            poll_interval_seconds=_env_float("INDEXER_POLL_INTERVAL_SECONDS", "5"),
            batch_size=_env_int("INDEXER_BATCH_SIZE", "1000"),
            confirmations=_env_int("INDEXER_CONFIRMATIONS", "3"),
            max_reorg_depth=_env_int("INDEXER_MAX_REORG_DEPTH", "100"),
            reorg_protection=_env_bool("INDEXER_REORG_PROTECTION", "false"),
            data_dir=os.getenv("INDEXER_DATA_DIR", "/var/lib/indexer"),
            reconcile_interval_seconds=_env_float("INDEXER_RECONCILE_INTERVAL_SECONDS", "300"),
            reconcile_sample_size=_env_int("INDEXER_RECONCILE_SAMPLE_SIZE", "50"),
            max_lag_blocks=_env_int("INDEXER_MAX_LAG_BLOCKS", "1000"),
            ledger_max_attempts=_env_int("INDEXER_LEDGER_MAX_ATTEMPTS", "5"),
            ledger_backoff_seconds=_env_float("INDEXER_LEDGER_BACKOFF_SECONDS", "0.5"),
            ledger_max_backoff_seconds=_env_float("INDEXER_LEDGER_MAX_BACKOFF_SECONDS", "30"),
            ledger_max_concurrency=_env_int("INDEXER_LEDGER_MAX_CONCURRENCY", "4"),
            ledger_min_interval_seconds=_env_float("INDEXER_LEDGER_MIN_INTERVAL_SECONDS", "0"),
            log_level=os.getenv("INDEXER_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("INDEXER_LOG_FORMAT", "json").lower(),
            metrics_enabled=_env_bool("METRICS_ENABLED", "false"),
            metrics_port=_env_int("METRICS_PORT", "8080"),
        )

    @property
    def addresses(self) -> Dict[str, str]:
        """Event source name -> contract address (empty = source disabled)."""
        return {
            "property_share": self.property_share_address,
            "revenue_splitter": self.revenue_splitter_address,
            "marketplace": self.marketplace_address,
        }

    @property
    def checkpoint_dir(self) -> str:
        return os.path.join(self.data_dir, "checkpoints")

    @property
    def snapshot_dir(self) -> str:
        return os.path.join(self.data_dir, "snapshots")

    def validate(self) -> None:
        """
        Check settings required for live indexing.

        Raises:
            ConfigError: listing every problem found
        """
        problems: List[str] = []
        if not self.rpc_url:
            problems.append("INDEXER_RPC_URL is required")
        configured = {k: v for k, v in self.addresses.items() if v}
        if not configured:
            problems.append("at least one contract address must be set")
        for name, address in configured.items():
            if not is_address(address):
                problems.append(f"{name} address is not a valid address: {address}")
        if self.batch_size < 1:
            problems.append("INDEXER_BATCH_SIZE must be >= 1")
        if self.confirmations < 0:
            problems.append("INDEXER_CONFIRMATIONS must be >= 0")
        if self.max_reorg_depth < 1:
            problems.append("INDEXER_MAX_REORG_DEPTH must be >= 1")
        if self.start_block < 0:
            problems.append("INDEXER_START_BLOCK must be >= 0")
        if self.ledger_max_attempts < 1:
            problems.append("INDEXER_LEDGER_MAX_ATTEMPTS must be >= 1")
        if self.ledger_max_concurrency < 1:
            problems.append("INDEXER_LEDGER_MAX_CONCURRENCY must be >= 1")
        if self.log_format not in ("json", "text"):
            problems.append("INDEXER_LOG_FORMAT must be json or text")
        if problems:
            raise ConfigError("; ".join(problems))
