"""
JSON-RPC ledger client backed by web3.py.

Maps transport failures and node throttling to LedgerTransientError so the
RetryingLedger wrapper can back off; everything else is LedgerError.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from ..core.errors import LedgerError, LedgerTransientError
from ..core.events import RawLog
from ..decode.abi import BALANCE_OF_ABI
from .client import LedgerClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

_THROTTLE_MARKERS = ("rate limit", "too many requests", "429", "limit exceeded", "timeout", "timed out")
_TIMESTAMP_CACHE_SIZE = 4096


def _is_throttle(ex: Exception) -> bool:
    text = str(ex).lower()
    return any(marker in text for marker in _THROTTLE_MARKERS)


class Web3LedgerClient(LedgerClient):
    """
    Ledger access over an HTTP JSON-RPC endpoint.

    Block timestamps are fetched once per block and cached, so each RawLog
    carries the time of its block.
    """

    def __init__(self, rpc_url: str, timeout_seconds: float = 30.0) -> None:
        self.rpc_url = rpc_url
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds}))
        self._timestamps: Dict[int, int] = {}
        self._cache_lock = threading.Lock()

    def _rpc(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except requests.exceptions.RequestException as ex:
            raise LedgerTransientError(f"{operation}: {ex}") from ex
        except Web3Exception as ex:
            if _is_throttle(ex):
                raise LedgerTransientError(f"{operation}: {ex}") from ex
            raise LedgerError(f"{operation}: {ex}") from ex

    def _block_timestamp(self, block_number: int) -> int:
        with self._cache_lock:
            cached = self._timestamps.get(block_number)
        if cached is not None:
            return cached
        block = self._rpc("get_block", lambda: self.w3.eth.get_block(block_number))
        ts = int(block["timestamp"])
        with self._cache_lock:
            if len(self._timestamps) >= _TIMESTAMP_CACHE_SIZE:
                self._timestamps.clear()
            self._timestamps[block_number] = ts
        return ts

    def _to_raw(self, log: Any) -> RawLog:
        block_number = int(log["blockNumber"])
        return RawLog(
            address=str(log["address"]).lower(),
            topics=tuple(Web3.to_hex(t) for t in log["topics"]),
            data=Web3.to_hex(log["data"]),
            block_number=block_number,
            block_hash=Web3.to_hex(log["blockHash"]),
            transaction_hash=Web3.to_hex(log["transactionHash"]),
            transaction_index=int(log["transactionIndex"]),
            log_index=int(log["logIndex"]),
            block_timestamp=self._block_timestamp(block_number),
        )

    def get_logs(self, address: str, topics: Sequence[str], from_block: int, to_block: int) -> List[RawLog]:
        params = {
            "address": Web3.to_checksum_address(address),
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        if topics:
            params["topics"] = [list(topics)]
        logs = self._rpc("get_logs", lambda: self.w3.eth.get_logs(params))
        logger.debug(f"Fetched {len(logs)} logs from {address} [{from_block}, {to_block}]")
        return [self._to_raw(log) for log in logs]

    def get_block_number(self) -> int:
        return int(self._rpc("get_block_number", lambda: self.w3.eth.block_number))

    def get_block_hash(self, block_number: int) -> str:
        block = self._rpc("get_block", lambda: self.w3.eth.get_block(block_number))
        return Web3.to_hex(block["hash"])

    def get_balance(
        self, address: str, holder: str, property_id: int, block_number: Optional[int] = None
    ) -> int:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=BALANCE_OF_ABI)
        call = contract.functions.balanceOf(Web3.to_checksum_address(holder), property_id)
        identifier = block_number if block_number is not None else "latest"
        return int(self._rpc("get_balance", lambda: call.call(block_identifier=identifier)))
