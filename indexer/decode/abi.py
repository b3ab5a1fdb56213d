"""
Event catalogue of the indexed contracts.

Each EventSpec describes one ledger event signature: its parameters in
declaration order and which of them are indexed (carried in topics rather
than in the data payload).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import decode_hex, encode_hex, keccak

# (name, abi type, indexed)
Param = Tuple[str, str, bool]


@dataclass(frozen=True)
class EventSpec:
    name: str
    params: Tuple[Param, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p[1] for p in self.params)})"

    @property
    def topic(self) -> str:
        return encode_hex(keccak(text=self.signature))

    @property
    def indexed(self) -> List[Param]:
        return [p for p in self.params if p[2]]

    @property
    def non_indexed(self) -> List[Param]:
        return [p for p in self.params if not p[2]]

    def decode_args(self, topics: Tuple[str, ...], data: str) -> Dict[str, Any]:
        """
        Decode topics[1:] and the data payload into named arguments.

        Addresses are returned lowercase.

        Raises:
            ValueError: Topic count does not match the indexed parameters
            eth_abi.exceptions.DecodingError: Payload is not valid ABI data
        """
        indexed = self.indexed
        if len(topics) != len(indexed) + 1:
            raise ValueError(
                f"{self.name}: expected {len(indexed) + 1} topics, got {len(topics)}"
            )

        args: Dict[str, Any] = {}
        for (name, typ, _), topic in zip(indexed, topics[1:]):
            (args[name],) = abi_decode([typ], decode_hex(topic))

        body = self.non_indexed
        values = abi_decode([p[1] for p in body], decode_hex(data or "0x"))
        for (name, _, _), value in zip(body, values):
            args[name] = value

        return {k: _normalize(v) for k, v in args.items()}

    def encode_args(self, args: Mapping[str, Any]) -> Tuple[Tuple[str, ...], str]:
        """
        Inverse of decode_args: build (topics, data) for the given arguments.
        """
        topics = [self.topic]
        for name, typ, _ in self.indexed:
            topics.append(encode_hex(abi_encode([typ], [args[name]])))
        body = self.non_indexed
        data = abi_encode([p[1] for p in body], [args[p[0]] for p in body])
        return tuple(topics), encode_hex(data)


def _normalize(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return value.lower()
    if isinstance(value, tuple):
        return tuple(_normalize(v) for v in value)
    return value


PROPERTY_CREATED = EventSpec("PropertyCreated", (
    ("tokenId", "uint256", True),
    ("name", "string", False),
    ("location", "string", False),
    ("totalShares", "uint256", False),
    ("pricePerShare", "uint256", False),
))

TRANSFER_SINGLE = EventSpec("TransferSingle", (
    ("operator", "address", True),
    ("from", "address", True),
    ("to", "address", True),
    ("id", "uint256", False),
    ("value", "uint256", False),
))

TRANSFER_BATCH = EventSpec("TransferBatch", (
    ("operator", "address", True),
    ("from", "address", True),
    ("to", "address", True),
    ("ids", "uint256[]", False),
    ("values", "uint256[]", False),
))

RENT_DEPOSITED = EventSpec("RentDeposited", (
    ("tokenId", "uint256", True),
    ("amount", "uint256", False),
    ("feeAmount", "uint256", False),
    ("netAmount", "uint256", False),
))

FUNDS_DEPOSITED_BY_MANAGER = EventSpec("FundsDepositedByManager", (
    ("tokenId", "uint256", True),
    ("manager", "address", True),
    ("netAmount", "uint256", False),
    ("grossRent", "uint256", False),
    ("miscellaneousFee", "uint256", False),
))

REWARD_CLAIMED = EventSpec("RewardClaimed", (
    ("tokenId", "uint256", True),
    ("holder", "address", True),
    ("amount", "uint256", False),
))

LISTING_CREATED = EventSpec("ListingCreated", (
    ("listingId", "uint256", True),
    ("seller", "address", True),
    ("tokenId", "uint256", False),
    ("amount", "uint256", False),
    ("pricePerShare", "uint256", False),
))

LISTING_CANCELLED = EventSpec("ListingCancelled", (
    ("listingId", "uint256", True),
    ("seller", "address", True),
))

PURCHASE_EXECUTED = EventSpec("PurchaseExecuted", (
    ("listingId", "uint256", True),
    ("buyer", "address", True),
    ("seller", "address", True),
    ("tokenId", "uint256", False),
    ("amount", "uint256", False),
    ("totalPrice", "uint256", False),
))

SOURCE_EVENTS: Dict[str, Tuple[EventSpec, ...]] = {
    "property_share": (PROPERTY_CREATED, TRANSFER_SINGLE, TRANSFER_BATCH),
    "revenue_splitter": (RENT_DEPOSITED, FUNDS_DEPOSITED_BY_MANAGER, REWARD_CLAIMED),
    "marketplace": (LISTING_CREATED, LISTING_CANCELLED, PURCHASE_EXECUTED),
}

EVENTS_BY_NAME: Dict[str, EventSpec] = {
    spec.name: spec for specs in SOURCE_EVENTS.values() for spec in specs
}

# ERC-1155 balanceOf, used only for authoritative balance reads
BALANCE_OF_ABI = [
    {
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


@dataclass(frozen=True)
class Source:
    """
    One event source: a contract and the event signatures indexed from it.

    The checkpoint, run lock and trace id are all per source name.
    """
    name: str
    address: str
    events: Tuple[EventSpec, ...]

    @property
    def topics(self) -> List[str]:
        return [spec.topic for spec in self.events]


def default_sources(addresses: Mapping[str, str]) -> List[Source]:
    """
    Build sources for every configured contract address.

    Args:
        addresses: source name -> contract address; empty addresses are skipped
    """
    sources = []
    for name, specs in SOURCE_EVENTS.items():
        address = (addresses.get(name) or "").strip()
        if address:
            sources.append(Source(name=name, address=address.lower(), events=specs))
    return sources
