"""
Ledger log records and the typed domain events decoded from them.

Raw logs come from the ledger as-is. Domain events are immutable and carry
an EventMeta locating them in the ledger's total order.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

SENTINEL_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class RawLog:
    """
    Undecoded log record as returned by the ledger.

    Fields:
        address: Emitting contract address (lowercase hex)
        topics: Topic list; topics[0] is the event signature hash
        data: ABI-encoded non-indexed arguments (0x-hex)
        block_number: Block containing the log
        block_hash: Hash of that block
        transaction_hash: Emitting transaction
        transaction_index: Position of the transaction in its block
        log_index: Position of the log in its block
        block_timestamp: Block time in seconds (0 when unknown)
    """
    address: str
    topics: Tuple[str, ...]
    data: str
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    block_timestamp: int = 0

    @property
    def position(self) -> Tuple[int, int, int]:
        return (self.block_number, self.transaction_index, self.log_index)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["topics"] = list(self.topics)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawLog":
        return cls(**{**data, "topics": tuple(data["topics"])})


@dataclass(frozen=True)
class EventKey:
    """
    Stable composite identity of one applied event.

    item_index is set only for items exploded out of a batched event.
    """
    transaction_hash: str
    log_index: int
    item_index: Optional[int] = None

    def __str__(self) -> str:
        if self.item_index is None:
            return f"{self.transaction_hash}-{self.log_index}"
        return f"{self.transaction_hash}-{self.log_index}-{self.item_index}"

    @classmethod
    def parse(cls, value: str) -> "EventKey":
        parts = value.split("-")
        if len(parts) == 2:
            return cls(parts[0], int(parts[1]))
        if len(parts) == 3:
            return cls(parts[0], int(parts[1]), int(parts[2]))
        raise ValueError(f"invalid event key: {value!r}")


@dataclass(frozen=True)
class EventMeta:
    """Where an event sits in the ledger."""
    source: str
    address: str
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    timestamp: int = 0
    item_index: Optional[int] = None

    @property
    def key(self) -> EventKey:
        return EventKey(self.transaction_hash, self.log_index, self.item_index)

    @property
    def order(self) -> Tuple[int, int, int, int]:
        """Global merge key: (block, transaction index, log index, item index)."""
        item = self.item_index if self.item_index is not None else -1
        return (self.block_number, self.transaction_index, self.log_index, item)

    @classmethod
    def from_raw(cls, source: str, raw: RawLog) -> "EventMeta":
        return cls(
            source=source,
            address=raw.address.lower(),
            block_number=raw.block_number,
            block_hash=raw.block_hash,
            transaction_hash=raw.transaction_hash,
            transaction_index=raw.transaction_index,
            log_index=raw.log_index,
            timestamp=raw.block_timestamp,
        )


@dataclass(frozen=True)
class PropertyCreated:
    meta: EventMeta
    property_id: int
    name: str
    location: str
    total_shares: int
    price_per_share: int


@dataclass(frozen=True)
class SingleTransfer:
    meta: EventMeta
    operator: str
    from_address: str
    to_address: str
    property_id: int
    amount: int

    @property
    def is_mint(self) -> bool:
        return self.from_address == SENTINEL_ADDRESS

    @property
    def is_burn(self) -> bool:
        return self.to_address == SENTINEL_ADDRESS


@dataclass(frozen=True)
class BatchTransfer:
    """
    Multi-item transfer as emitted by the ledger.

    Never reaches the projector: the decoder explodes it into one
    SingleTransfer per array position.
    """
    meta: EventMeta
    operator: str
    from_address: str
    to_address: str
    property_ids: Tuple[int, ...]
    amounts: Tuple[int, ...]


@dataclass(frozen=True)
class RentDeposited:
    meta: EventMeta
    property_id: int
    gross_amount: int
    fee_amount: int
    net_amount: int
    depositor: Optional[str] = None


@dataclass(frozen=True)
class RewardClaimed:
    meta: EventMeta
    property_id: int
    holder: str
    amount: int


@dataclass(frozen=True)
class ListingCreated:
    meta: EventMeta
    listing_id: int
    property_id: int
    seller: str
    amount: int
    price_per_share: int


@dataclass(frozen=True)
class ListingCancelled:
    meta: EventMeta
    listing_id: int
    seller: Optional[str] = None


@dataclass(frozen=True)
class ListingPurchased:
    meta: EventMeta
    listing_id: int
    buyer: str
    amount: Optional[int] = None
    total_price: Optional[int] = None
