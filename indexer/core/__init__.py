"""
Core projection primitives.

This module provides:
- RawLog / EventMeta / EventKey and the typed domain events
- Property, Holder, Listing aggregates and the immutable log records
- Projector: applies one event through a pure handler
- IdempotencyGuard: admits each event key exactly once
- KeyedLocks: single writer per aggregate key
- Canonical: deterministic serialization
"""

from .events import (
    SENTINEL_ADDRESS,
    RawLog,
    EventKey,
    EventMeta,
    PropertyCreated,
    SingleTransfer,
    BatchTransfer,
    RentDeposited,
    RewardClaimed,
    ListingCreated,
    ListingCancelled,
    ListingPurchased,
)
from .state import (
    ListingState,
    Property,
    Holder,
    Listing,
    TransferRecord,
    DepositRecord,
    ClaimRecord,
    PurchaseRecord,
)
from .handlers import Mutation
from .projector import Projector
from .guard import IdempotencyGuard
from .locks import KeyedLocks
from .canonical import canonicalize, canonical_json_bytes, canonical_json_str
from .errors import (
    IndexerError,
    DecodeError,
    MissingDependencyError,
    InvalidTransitionError,
    LedgerError,
    LedgerTransientError,
    LedgerUnavailableError,
    CheckpointError,
    RangeOverlapError,
    DataDirLockedError,
    RunInProgressError,
    IntegrityError,
    ConfigError,
)

__all__ = [
    "SENTINEL_ADDRESS",
    "RawLog",
    "EventKey",
    "EventMeta",
    "PropertyCreated",
    "SingleTransfer",
    "BatchTransfer",
    "RentDeposited",
    "RewardClaimed",
    "ListingCreated",
    "ListingCancelled",
    "ListingPurchased",
    "ListingState",
    "Property",
    "Holder",
    "Listing",
    "TransferRecord",
    "DepositRecord",
    "ClaimRecord",
    "PurchaseRecord",
    "Mutation",
    "Projector",
    "IdempotencyGuard",
    "KeyedLocks",
    "canonicalize",
    "canonical_json_bytes",
    "canonical_json_str",
    "IndexerError",
    "DecodeError",
    "MissingDependencyError",
    "InvalidTransitionError",
    "LedgerError",
    "LedgerTransientError",
    "LedgerUnavailableError",
    "CheckpointError",
    "RangeOverlapError",
    "DataDirLockedError",
    "RunInProgressError",
    "IntegrityError",
    "ConfigError",
]
