"""
In-process projection store.

Holds the aggregates and the append-only log records. Reads are safe from any
thread; writes arrive only as committed Mutations from the Projector, or as
compare-and-swap corrections from the reconciler.
"""

import threading
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set

from ..core.handlers import Mutation
from ..core.locks import KeyedLocks
from ..core.state import (
    ClaimRecord,
    DepositRecord,
    Holder,
    HolderKey,
    Listing,
    ListingState,
    Property,
    PurchaseRecord,
    TransferRecord,
)


class ProjectionStore:
    """
    Aggregates plus immutable log records.

    Log records are kept in application order. That is ledger order except
    for deferred events, which are appended when their dependency finally
    arrives; readers that need ledger order sort by block_number.
    Appending a record whose key already exists is rejected, so records are
    never overwritten.
    """

    def __init__(self, locks: Optional[KeyedLocks] = None) -> None:
        self.locks = locks or KeyedLocks()
        self._mu = threading.RLock()
        self._properties: Dict[int, Property] = {}
        self._holders: Dict[HolderKey, Holder] = {}
        self._listings: Dict[int, Listing] = {}
        self._transfers: Dict[str, TransferRecord] = {}
        self._deposits: Dict[str, DepositRecord] = {}
        self._claims: Dict[str, ClaimRecord] = {}
        self._purchases: Dict[str, PurchaseRecord] = {}
        self._touched: Set[HolderKey] = set()

    # Reads

    def get_property(self, property_id: int) -> Optional[Property]:
        with self._mu:
            return self._properties.get(property_id)

    def get_holder(self, property_id: int, address: str) -> Optional[Holder]:
        with self._mu:
            return self._holders.get((property_id, address.lower()))

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        with self._mu:
            return self._listings.get(listing_id)

    def properties(self) -> List[Property]:
        with self._mu:
            return [self._properties[k] for k in sorted(self._properties)]

    def holders(self) -> List[Holder]:
        with self._mu:
            return [self._holders[k] for k in sorted(self._holders)]

    def listings(self, state: Optional[ListingState] = None) -> List[Listing]:
        with self._mu:
            out = [self._listings[k] for k in sorted(self._listings)]
        if state is not None:
            out = [x for x in out if x.state is state]
        return out

    def transfers(self) -> List[TransferRecord]:
        with self._mu:
            return list(self._transfers.values())

    def deposits(self) -> List[DepositRecord]:
        with self._mu:
            return list(self._deposits.values())

    def claims(self) -> List[ClaimRecord]:
        with self._mu:
            return list(self._claims.values())

    def purchases(self) -> List[PurchaseRecord]:
        with self._mu:
            return list(self._purchases.values())

    # Writes

    def commit(self, mutation: Mutation) -> None:
        """
        Store new aggregate versions and append the mutation's record.

        Raises:
            ValueError: If a record with the same key was already appended
        """
        with self._mu:
            record = mutation.record
            if record is not None:
                table = self._table_for(record)
                if record.key in table:
                    raise ValueError(f"log record {record.key} already appended")
                table[record.key] = record
            for prop in mutation.properties:
                self._properties[prop.id] = prop
            for holder in mutation.holders:
                self._holders[holder.key] = holder
                self._touched.add(holder.key)
            for listing in mutation.listings:
                self._listings[listing.id] = listing

    def compare_and_set_balance(
        self,
        property_id: int,
        address: str,
        expected_last_block: int,
        balance: int,
        expected_balance: Optional[int] = None,
    ) -> bool:
        """
        Overwrite a holder balance if nothing touched it since the read.

        The caller must hold the holder's write lock.

        Args:
            expected_last_block: Holder.last_block observed at read time
            expected_balance: Balance observed at read time (also compared if given)

        Returns:
            True if written, False if the holder moved on (stale correction)
        """
        key = (property_id, address.lower())
        with self._mu:
            current = self._holders.get(key)
            if current is None or current.last_block != expected_last_block:
                return False
            if expected_balance is not None and current.balance != expected_balance:
                return False
            self._holders[key] = replace(current, balance=balance)
            return True

    def touch(self, keys: Iterable[HolderKey]) -> None:
        """Mark holders for the next thorough reconciliation."""
        with self._mu:
            self._touched.update(keys)

    def drain_touched(self) -> List[HolderKey]:
        """Holder keys mutated since the previous drain, sorted."""
        with self._mu:
            touched = sorted(self._touched)
            self._touched = set()
            return touched

    def _table_for(self, record) -> Dict[str, Any]:
        if isinstance(record, TransferRecord):
            return self._transfers
        if isinstance(record, DepositRecord):
            return self._deposits
        if isinstance(record, ClaimRecord):
            return self._claims
        if isinstance(record, PurchaseRecord):
            return self._purchases
        raise TypeError(f"unknown record type: {type(record).__name__}")

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        with self._mu:
            return {
                "properties": [p.to_dict() for p in self.properties()],
                "holders": [h.to_dict() for h in self.holders()],
                "listings": [x.to_dict() for x in self.listings()],
                "transfers": [r.to_dict() for r in self._transfers.values()],
                "deposits": [r.to_dict() for r in self._deposits.values()],
                "claims": [r.to_dict() for r in self._claims.values()],
                "purchases": [r.to_dict() for r in self._purchases.values()],
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], locks: Optional[KeyedLocks] = None) -> "ProjectionStore":
        store = cls(locks=locks)
        data = data or {}
        for p in data.get("properties", []):
            prop = Property.from_dict(p)
            store._properties[prop.id] = prop
        for h in data.get("holders", []):
            holder = Holder.from_dict(h)
            store._holders[holder.key] = holder
            # Not yet checked against the ledger by this process
            store._touched.add(holder.key)
        for x in data.get("listings", []):
            listing = Listing.from_dict(x)
            store._listings[listing.id] = listing
        for r in data.get("transfers", []):
            store._transfers[r["key"]] = TransferRecord.from_dict(r)
        for r in data.get("deposits", []):
            store._deposits[r["key"]] = DepositRecord.from_dict(r)
        for r in data.get("claims", []):
            store._claims[r["key"]] = ClaimRecord.from_dict(r)
        for r in data.get("purchases", []):
            store._purchases[r["key"]] = PurchaseRecord.from_dict(r)
        return store
