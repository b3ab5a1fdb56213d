"""
Read-only projection queries for API layers and the CLI.

All writes go through the Projector; nothing here mutates the store.
"""

from typing import Any, Dict, List, Optional

from .core.state import ListingState
from .store.projection import ProjectionStore


def get_property(store: ProjectionStore, property_id: int) -> Optional[Dict[str, Any]]:
    prop = store.get_property(property_id)
    return prop.to_dict() if prop else None


def get_holder(store: ProjectionStore, property_id: int, address: str) -> Optional[Dict[str, Any]]:
    holder = store.get_holder(property_id, address)
    return holder.to_dict() if holder else None


def get_listing(store: ProjectionStore, listing_id: int) -> Optional[Dict[str, Any]]:
    listing = store.get_listing(listing_id)
    return listing.to_dict() if listing else None


def list_active_listings(store: ProjectionStore) -> List[Dict[str, Any]]:
    return [x.to_dict() for x in store.listings(state=ListingState.ACTIVE)]


def list_holders(store: ProjectionStore, property_id: int, include_empty: bool = False) -> List[Dict[str, Any]]:
    """
    Holders of one property, largest balance first.

    Zero-balance holders persist in the projection; they are hidden unless
    include_empty is set.
    """
    holders = [h for h in store.holders() if h.property_id == property_id]
    if not include_empty:
        holders = [h for h in holders if h.balance != 0]
    holders.sort(key=lambda h: (-h.balance, h.address))
    return [h.to_dict() for h in holders]


def get_deposit_history(store: ProjectionStore, property_id: int, last_n: int = 20) -> List[Dict[str, Any]]:
    """Most recent deposits of one property, oldest first."""
    deposits = [d for d in store.deposits() if d.property_id == property_id]
    deposits.sort(key=lambda d: d.block_number)
    return [d.to_dict() for d in deposits[-last_n:]]


def get_purchase_history(store: ProjectionStore, listing_id: int) -> List[Dict[str, Any]]:
    purchases = [p for p in store.purchases() if p.listing_id == listing_id]
    purchases.sort(key=lambda p: p.block_number)
    return [p.to_dict() for p in purchases]


def get_summary(store: ProjectionStore) -> Dict[str, Any]:
    listings = store.listings()
    return {
        "properties": len(store.properties()),
        "holders": len(store.holders()),
        "listings": len(listings),
        "active_listings": sum(1 for x in listings if x.state is ListingState.ACTIVE),
        "transfers": len(store.transfers()),
        "deposits": len(store.deposits()),
        "claims": len(store.claims()),
        "purchases": len(store.purchases()),
    }
