"""
Projection data model.

Aggregates (Property, Holder, Listing) are the queryable state derived from
the ledger. Log records (TransferRecord, DepositRecord, ClaimRecord,
PurchaseRecord) are the append-only facts the aggregates can be recomputed from.

All types are immutable. Handlers produce new instances with
dataclasses.replace().
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

HolderKey = Tuple[int, str]


class ListingState(str, Enum):
    ACTIVE = "Active"
    CANCELLED = "Cancelled"
    PURCHASED = "Purchased"

    @property
    def is_terminal(self) -> bool:
        return self is not ListingState.ACTIVE


@dataclass(frozen=True)
class Property:
    """
    Tokenised property.

    total_deposited only ever grows, and only through deposit events.
    """
    id: int
    name: str
    location: str
    total_shares: int
    price_per_share: int
    total_deposited: int = 0
    created_at: int = 0
    last_block: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Property":
        return Property(**data)


@dataclass(frozen=True)
class Holder:
    """
    Balance of one address in one property.

    last_block is the highest block of any event that mutated this holder;
    reconciliation uses it as a compare-and-swap token.
    """
    property_id: int
    address: str
    balance: int = 0
    total_claimed: int = 0
    last_block: int = 0

    @property
    def key(self) -> HolderKey:
        return (self.property_id, self.address)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Holder":
        return Holder(**data)


@dataclass(frozen=True)
class Listing:
    """
    Marketplace listing.

    amount is the listed amount; remaining_amount shrinks with every
    (possibly partial) purchase and the listing becomes Purchased when it
    reaches zero. buyer is set only then.
    """
    id: int
    property_id: int
    seller: str
    amount: int
    price_per_share: int
    state: ListingState = ListingState.ACTIVE
    remaining_amount: int = 0
    created_at: int = 0
    terminal_at: Optional[int] = None
    buyer: Optional[str] = None
    purchased_amount: int = 0
    total_price: int = 0
    last_block: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Listing":
        data = dict(data)
        data["state"] = ListingState(data.get("state", ListingState.ACTIVE.value))
        if "remaining_amount" not in data:
            # Written before partial purchases were tracked
            active = data["state"] is ListingState.ACTIVE
            data["remaining_amount"] = data["amount"] - data.get("purchased_amount", 0) if active else 0
        return Listing(**data)


@dataclass(frozen=True)
class TransferRecord:
    key: str
    property_id: int
    from_address: str
    to_address: str
    amount: int
    block_number: int
    timestamp: int
    transaction_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TransferRecord":
        return TransferRecord(**data)


@dataclass(frozen=True)
class DepositRecord:
    """Gross, fee and net are stored independently as emitted."""
    key: str
    property_id: int
    gross_amount: int
    fee_amount: int
    net_amount: int
    block_number: int
    timestamp: int
    transaction_hash: str
    depositor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DepositRecord":
        return DepositRecord(**data)


@dataclass(frozen=True)
class ClaimRecord:
    key: str
    property_id: int
    holder: str
    amount: int
    block_number: int
    timestamp: int
    transaction_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClaimRecord":
        return ClaimRecord(**data)


@dataclass(frozen=True)
class PurchaseRecord:
    """One marketplace purchase, full or partial."""
    key: str
    listing_id: int
    property_id: int
    buyer: str
    seller: str
    amount: int
    total_price: int
    block_number: int
    timestamp: int
    transaction_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PurchaseRecord":
        return PurchaseRecord(**data)
