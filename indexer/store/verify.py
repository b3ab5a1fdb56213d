"""
Replayability check: recompute aggregates from the immutable log records.

Every Holder balance and claimed total, every Property deposit total and
every Listing remaining amount must equal what the records that reference it
add up to.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from ..core.events import SENTINEL_ADDRESS
from .projection import ProjectionStore


@dataclass
class VerificationReport:
    """
    Result of verify_projection.

    Fields:
        valid: True when no mismatch was found
        checked_holders: Number of holders compared
        checked_properties: Number of properties compared
        checked_listings: Number of listings compared
        mismatches: One dict per diverging field
    """
    valid: bool
    checked_holders: int = 0
    checked_properties: int = 0
    checked_listings: int = 0
    mismatches: List[Dict[str, object]] = field(default_factory=list)


def verify_projection(store: ProjectionStore) -> VerificationReport:
    balances: Dict[Tuple[int, str], int] = defaultdict(int)
    claimed: Dict[Tuple[int, str], int] = defaultdict(int)
    deposited: Dict[int, int] = defaultdict(int)
    purchased: Dict[int, int] = defaultdict(int)

    for t in store.transfers():
        if t.from_address != SENTINEL_ADDRESS:
            balances[(t.property_id, t.from_address)] -= t.amount
        if t.to_address != SENTINEL_ADDRESS:
            balances[(t.property_id, t.to_address)] += t.amount
    for c in store.claims():
        claimed[(c.property_id, c.holder)] += c.amount
    for d in store.deposits():
        deposited[d.property_id] += d.net_amount
    for p in store.purchases():
        purchased[p.listing_id] += p.amount

    mismatches: List[Dict[str, object]] = []
    holders = store.holders()
    for h in holders:
        if h.balance != balances.get(h.key, 0):
            mismatches.append({
                "entity": "holder",
                "key": list(h.key),
                "field": "balance",
                "projected": h.balance,
                "replayed": balances.get(h.key, 0),
            })
        if h.total_claimed != claimed.get(h.key, 0):
            mismatches.append({
                "entity": "holder",
                "key": list(h.key),
                "field": "total_claimed",
                "projected": h.total_claimed,
                "replayed": claimed.get(h.key, 0),
            })

    known = {h.key for h in holders}
    for key in sorted(set(balances) | set(claimed)):
        if key not in known:
            mismatches.append({"entity": "holder", "key": list(key), "field": "missing"})

    properties = store.properties()
    for p in properties:
        if p.total_deposited != deposited.get(p.id, 0):
            mismatches.append({
                "entity": "property",
                "key": p.id,
                "field": "total_deposited",
                "projected": p.total_deposited,
                "replayed": deposited.get(p.id, 0),
            })

    listings = store.listings()
    for x in listings:
        expected = x.amount - purchased.get(x.id, 0)
        if x.remaining_amount != expected:
            mismatches.append({
                "entity": "listing",
                "key": x.id,
                "field": "remaining_amount",
                "projected": x.remaining_amount,
                "replayed": expected,
            })

    return VerificationReport(
        valid=not mismatches,
        checked_holders=len(holders),
        checked_properties=len(properties),
        checked_listings=len(listings),
        mismatches=mismatches,
    )
