"""
Builders for ABI-encoded ledger logs and a fully wired in-memory indexer.

Logs are encoded with the same EventSpec catalogue the decoder uses, so every
test exercises real eth_abi decoding.
"""

from types import SimpleNamespace
from typing import Any, Dict, Optional

from indexer.checkpoint.store import MemoryCheckpointStore
from indexer.core.events import SENTINEL_ADDRESS, RawLog
from indexer.core.guard import IdempotencyGuard
from indexer.core.projector import Projector
from indexer.decode import abi
from indexer.decode.abi import default_sources
from indexer.decode.decoder import EventDecoder
from indexer.ledger.memory import MemoryLedger
from indexer.replay.coordinator import ReplayCoordinator
from indexer.store.projection import ProjectionStore

PROPERTY_SHARE = "0x" + "a1" * 20
REVENUE_SPLITTER = "0x" + "b2" * 20
MARKETPLACE = "0x" + "c3" * 20

ADDRESSES = {
    "property_share": PROPERTY_SHARE,
    "revenue_splitter": REVENUE_SPLITTER,
    "marketplace": MARKETPLACE,
}

ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "44" * 20
OPERATOR = "0x" + "33" * 20
MANAGER = "0x" + "55" * 20
SENTINEL = SENTINEL_ADDRESS

GENESIS_TIME = 1_700_000_000


def tx_hash(block: int, tx_index: int = 0) -> str:
    return "0x%064x" % (block * 1000 + tx_index + 1)


def block_hash(block: int) -> str:
    # Same default the MemoryLedger reports for blocks it has no log for
    return "0x%064x" % block


def raw_log(
    spec: abi.EventSpec,
    address: str,
    args: Dict[str, Any],
    block: int,
    tx_index: int = 0,
    log_index: int = 0,
    transaction_hash: Optional[str] = None,
    hash_of_block: Optional[str] = None,
) -> RawLog:
    topics, data = spec.encode_args(args)
    return RawLog(
        address=address,
        topics=topics,
        data=data,
        block_number=block,
        block_hash=hash_of_block or block_hash(block),
        transaction_hash=transaction_hash or tx_hash(block, tx_index),
        transaction_index=tx_index,
        log_index=log_index,
        block_timestamp=GENESIS_TIME + block * 12,
    )


def property_created(property_id, block, total_shares=1000, price_per_share=100, name=None, **pos):
    args = {
        "tokenId": property_id,
        "name": name or f"Property {property_id}",
        "location": "Lisbon",
        "totalShares": total_shares,
        "pricePerShare": price_per_share,
    }
    return raw_log(abi.PROPERTY_CREATED, PROPERTY_SHARE, args, block, **pos)


def transfer_single(from_address, to_address, property_id, amount, block, **pos):
    args = {"operator": OPERATOR, "from": from_address, "to": to_address, "id": property_id, "value": amount}
    return raw_log(abi.TRANSFER_SINGLE, PROPERTY_SHARE, args, block, **pos)


def transfer_batch(from_address, to_address, property_ids, amounts, block, **pos):
    args = {
        "operator": OPERATOR,
        "from": from_address,
        "to": to_address,
        "ids": list(property_ids),
        "values": list(amounts),
    }
    return raw_log(abi.TRANSFER_BATCH, PROPERTY_SHARE, args, block, **pos)


def rent_deposited(property_id, gross, fee, net, block, **pos):
    args = {"tokenId": property_id, "amount": gross, "feeAmount": fee, "netAmount": net}
    return raw_log(abi.RENT_DEPOSITED, REVENUE_SPLITTER, args, block, **pos)


def funds_deposited_by_manager(property_id, manager, net, gross, fee, block, **pos):
    args = {
        "tokenId": property_id,
        "manager": manager,
        "netAmount": net,
        "grossRent": gross,
        "miscellaneousFee": fee,
    }
    return raw_log(abi.FUNDS_DEPOSITED_BY_MANAGER, REVENUE_SPLITTER, args, block, **pos)


def reward_claimed(property_id, holder, amount, block, **pos):
    args = {"tokenId": property_id, "holder": holder, "amount": amount}
    return raw_log(abi.REWARD_CLAIMED, REVENUE_SPLITTER, args, block, **pos)


def listing_created(listing_id, seller, property_id, amount, price_per_share, block, **pos):
    args = {
        "listingId": listing_id,
        "seller": seller,
        "tokenId": property_id,
        "amount": amount,
        "pricePerShare": price_per_share,
    }
    return raw_log(abi.LISTING_CREATED, MARKETPLACE, args, block, **pos)


def listing_cancelled(listing_id, seller, block, **pos):
    args = {"listingId": listing_id, "seller": seller}
    return raw_log(abi.LISTING_CANCELLED, MARKETPLACE, args, block, **pos)


def purchase_executed(listing_id, buyer, seller, property_id, amount, total_price, block, **pos):
    args = {
        "listingId": listing_id,
        "buyer": buyer,
        "seller": seller,
        "tokenId": property_id,
        "amount": amount,
        "totalPrice": total_price,
    }
    return raw_log(abi.PURCHASE_EXECUTED, MARKETPLACE, args, block, **pos)


def build_indexer(ledger: Optional[MemoryLedger] = None, snapshots=None, **options) -> SimpleNamespace:
    """
    In-memory indexer over all three sources.

    options are passed to ReplayCoordinator (start_block, confirmations, ...).
    """
    ledger = ledger or MemoryLedger()
    sources = default_sources(ADDRESSES)
    store = ProjectionStore()
    guard = IdempotencyGuard()
    projector = Projector(store)
    checkpoints = MemoryCheckpointStore()
    options.setdefault("start_block", 1)
    options.setdefault("confirmations", 0)
    coordinator = ReplayCoordinator(
        ledger,
        EventDecoder(sources),
        sources,
        guard,
        projector,
        checkpoints,
        snapshots=snapshots,
        **options,
    )
    return SimpleNamespace(
        ledger=ledger,
        sources=sources,
        store=store,
        guard=guard,
        projector=projector,
        checkpoints=checkpoints,
        coordinator=coordinator,
    )


ALL_SOURCES = ("marketplace", "property_share", "revenue_splitter")
