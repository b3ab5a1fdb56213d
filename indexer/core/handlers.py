"""
Projection handlers.

Each handler is a pure function (view, event) -> Mutation. It reads the
current aggregates through the view and never writes; the Projector commits
the returned Mutation.
"""

from dataclasses import dataclass, replace
from typing import Dict, Hashable, List, Optional, Protocol, Tuple, Union

from .errors import InvalidTransitionError, MissingDependencyError
from .events import (
    ListingCancelled,
    ListingCreated,
    ListingPurchased,
    PropertyCreated,
    RentDeposited,
    RewardClaimed,
    SingleTransfer,
)
from .state import (
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

Record = Union[TransferRecord, DepositRecord, ClaimRecord, PurchaseRecord]
ProjectableEvent = Union[
    PropertyCreated,
    SingleTransfer,
    RentDeposited,
    RewardClaimed,
    ListingCreated,
    ListingCancelled,
    ListingPurchased,
]


class ProjectionView(Protocol):
    def get_property(self, property_id: int) -> Optional[Property]: ...

    def get_holder(self, property_id: int, address: str) -> Optional[Holder]: ...

    def get_listing(self, listing_id: int) -> Optional[Listing]: ...


@dataclass(frozen=True)
class Mutation:
    """New aggregate versions plus the log record to append."""
    properties: Tuple[Property, ...] = ()
    holders: Tuple[Holder, ...] = ()
    listings: Tuple[Listing, ...] = ()
    record: Optional[Record] = None


def _require_property(view: ProjectionView, property_id: int) -> Property:
    prop = view.get_property(property_id)
    if prop is None:
        raise MissingDependencyError(f"property {property_id} not projected")
    return prop


def _require_active_listing(view: ProjectionView, listing_id: int, action: str) -> Listing:
    listing = view.get_listing(listing_id)
    if listing is None:
        raise MissingDependencyError(f"listing {listing_id} not projected")
    if listing.state.is_terminal:
        raise InvalidTransitionError(
            f"listing {listing_id} is {listing.state.value}, cannot be {action}"
        )
    return listing


def on_property_created(view: ProjectionView, ev: PropertyCreated) -> Mutation:
    if view.get_property(ev.property_id) is not None:
        raise InvalidTransitionError(f"property {ev.property_id} already exists")
    prop = Property(
        id=ev.property_id,
        name=ev.name,
        location=ev.location,
        total_shares=ev.total_shares,
        price_per_share=ev.price_per_share,
        total_deposited=0,
        created_at=ev.meta.timestamp,
        last_block=ev.meta.block_number,
    )
    return Mutation(properties=(prop,))


def on_single_transfer(view: ProjectionView, ev: SingleTransfer) -> Mutation:
    """
    Move `amount` from one holder to another.

    A transfer from the sentinel is a mint (nobody is debited); a transfer to
    the sentinel is a burn (nobody is credited). The record is always kept
    with from/to exactly as emitted.
    """
    _require_property(view, ev.property_id)
    block = ev.meta.block_number
    changed: Dict[HolderKey, Holder] = {}

    def current(address: str) -> Holder:
        key = (ev.property_id, address)
        if key in changed:
            return changed[key]
        return view.get_holder(ev.property_id, address) or Holder(ev.property_id, address)

    if not ev.is_mint:
        h = current(ev.from_address)
        changed[h.key] = replace(h, balance=h.balance - ev.amount, last_block=max(h.last_block, block))
    if not ev.is_burn:
        h = current(ev.to_address)
        changed[h.key] = replace(h, balance=h.balance + ev.amount, last_block=max(h.last_block, block))

    record = TransferRecord(
        key=str(ev.meta.key),
        property_id=ev.property_id,
        from_address=ev.from_address,
        to_address=ev.to_address,
        amount=ev.amount,
        block_number=block,
        timestamp=ev.meta.timestamp,
        transaction_hash=ev.meta.transaction_hash,
    )
    return Mutation(holders=tuple(changed.values()), record=record)


def on_rent_deposited(view: ProjectionView, ev: RentDeposited) -> Mutation:
    prop = _require_property(view, ev.property_id)
    updated = replace(
        prop,
        total_deposited=prop.total_deposited + ev.net_amount,
        last_block=max(prop.last_block, ev.meta.block_number),
    )
    record = DepositRecord(
        key=str(ev.meta.key),
        property_id=ev.property_id,
        gross_amount=ev.gross_amount,
        fee_amount=ev.fee_amount,
        net_amount=ev.net_amount,
        block_number=ev.meta.block_number,
        timestamp=ev.meta.timestamp,
        transaction_hash=ev.meta.transaction_hash,
        depositor=ev.depositor,
    )
    return Mutation(properties=(updated,), record=record)


def on_reward_claimed(view: ProjectionView, ev: RewardClaimed) -> Mutation:
    _require_property(view, ev.property_id)
    holder = view.get_holder(ev.property_id, ev.holder) or Holder(ev.property_id, ev.holder)
    updated = replace(
        holder,
        total_claimed=holder.total_claimed + ev.amount,
        last_block=max(holder.last_block, ev.meta.block_number),
    )
    record = ClaimRecord(
        key=str(ev.meta.key),
        property_id=ev.property_id,
        holder=ev.holder,
        amount=ev.amount,
        block_number=ev.meta.block_number,
        timestamp=ev.meta.timestamp,
        transaction_hash=ev.meta.transaction_hash,
    )
    return Mutation(holders=(updated,), record=record)


def on_listing_created(view: ProjectionView, ev: ListingCreated) -> Mutation:
    _require_property(view, ev.property_id)
    if view.get_listing(ev.listing_id) is not None:
        raise InvalidTransitionError(f"listing {ev.listing_id} already exists")
    listing = Listing(
        id=ev.listing_id,
        property_id=ev.property_id,
        seller=ev.seller,
        amount=ev.amount,
        price_per_share=ev.price_per_share,
        state=ListingState.ACTIVE,
        remaining_amount=ev.amount,
        created_at=ev.meta.timestamp,
        last_block=ev.meta.block_number,
    )
    return Mutation(listings=(listing,))


def on_listing_cancelled(view: ProjectionView, ev: ListingCancelled) -> Mutation:
    listing = _require_active_listing(view, ev.listing_id, "cancelled")
    updated = replace(
        listing,
        state=ListingState.CANCELLED,
        terminal_at=ev.meta.timestamp,
        last_block=ev.meta.block_number,
    )
    return Mutation(listings=(updated,))


def on_listing_purchased(view: ProjectionView, ev: ListingPurchased) -> Mutation:
    """
    Record a full or partial purchase.

    The purchased amount comes off remaining_amount; the listing turns
    Purchased (terminal) only when nothing remains. A purchase larger than
    what remains is an invalid transition.
    """
    listing = _require_active_listing(view, ev.listing_id, "purchased")
    amount = listing.remaining_amount if ev.amount is None else ev.amount
    if amount > listing.remaining_amount:
        raise InvalidTransitionError(
            f"listing {ev.listing_id} has {listing.remaining_amount} remaining, "
            f"cannot be purchased for {amount}"
        )
    remaining = listing.remaining_amount - amount
    price = ev.total_price or 0
    sold_out = remaining == 0
    updated = replace(
        listing,
        state=ListingState.PURCHASED if sold_out else ListingState.ACTIVE,
        remaining_amount=remaining,
        terminal_at=ev.meta.timestamp if sold_out else None,
        buyer=ev.buyer if sold_out else None,
        purchased_amount=listing.purchased_amount + amount,
        total_price=listing.total_price + price,
        last_block=ev.meta.block_number,
    )
    record = PurchaseRecord(
        key=str(ev.meta.key),
        listing_id=ev.listing_id,
        property_id=listing.property_id,
        buyer=ev.buyer,
        seller=listing.seller,
        amount=amount,
        total_price=price,
        block_number=ev.meta.block_number,
        timestamp=ev.meta.timestamp,
        transaction_hash=ev.meta.transaction_hash,
    )
    return Mutation(listings=(updated,), record=record)


def touched_keys(ev: ProjectableEvent) -> List[Hashable]:
    """Aggregate keys an event may read or write."""
    if isinstance(ev, SingleTransfer):
        return [
            ("property", ev.property_id),
            ("holder", ev.property_id, ev.from_address),
            ("holder", ev.property_id, ev.to_address),
        ]
    if isinstance(ev, RewardClaimed):
        return [("property", ev.property_id), ("holder", ev.property_id, ev.holder)]
    if isinstance(ev, ListingCreated):
        return [("property", ev.property_id), ("listing", ev.listing_id)]
    if isinstance(ev, (ListingCancelled, ListingPurchased)):
        return [("listing", ev.listing_id)]
    return [("property", ev.property_id)]


DEFAULT_HANDLERS = {
    PropertyCreated: on_property_created,
    SingleTransfer: on_single_transfer,
    RentDeposited: on_rent_deposited,
    RewardClaimed: on_reward_claimed,
    ListingCreated: on_listing_created,
    ListingCancelled: on_listing_cancelled,
    ListingPurchased: on_listing_purchased,
}
