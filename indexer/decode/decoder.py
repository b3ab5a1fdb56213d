"""
EventDecoder: raw ledger log -> typed domain events.

Logs whose (contract, topic0) pair is not in the catalogue are ignored.
Recognized logs with a malformed payload raise DecodeError. A batched
transfer is exploded into one SingleTransfer per item, or rejected whole.
"""

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Tuple

from eth_abi.exceptions import DecodingError

from ..core.errors import DecodeError
from ..core.events import (
    BatchTransfer,
    EventMeta,
    ListingCancelled,
    ListingCreated,
    ListingPurchased,
    PropertyCreated,
    RawLog,
    RentDeposited,
    RewardClaimed,
    SingleTransfer,
)
from .abi import EventSpec, Source

Builder = Callable[[EventMeta, Dict[str, Any]], List[Any]]


def explode_batch(batch: BatchTransfer) -> List[SingleTransfer]:
    """
    Split a batched transfer into per-item transfers.

    Item i gets the key (transaction_hash, log_index, i).

    Raises:
        DecodeError: ids and amounts differ in length (nothing is produced)
    """
    if len(batch.property_ids) != len(batch.amounts):
        raise DecodeError(
            f"TransferBatch {batch.meta.key}: {len(batch.property_ids)} ids "
            f"but {len(batch.amounts)} amounts"
        )
    return [
        SingleTransfer(
            meta=replace(batch.meta, item_index=i),
            operator=batch.operator,
            from_address=batch.from_address,
            to_address=batch.to_address,
            property_id=property_id,
            amount=amount,
        )
        for i, (property_id, amount) in enumerate(zip(batch.property_ids, batch.amounts))
    ]


def _property_created(meta, a):
    return [PropertyCreated(meta, a["tokenId"], a["name"], a["location"], a["totalShares"], a["pricePerShare"])]


def _transfer_single(meta, a):
    return [SingleTransfer(meta, a["operator"], a["from"], a["to"], a["id"], a["value"])]


def _transfer_batch(meta, a):
    batch = BatchTransfer(meta, a["operator"], a["from"], a["to"], tuple(a["ids"]), tuple(a["values"]))
    return explode_batch(batch)


def _rent_deposited(meta, a):
    return [RentDeposited(meta, a["tokenId"], a["amount"], a["feeAmount"], a["netAmount"])]


def _funds_deposited_by_manager(meta, a):
    return [
        RentDeposited(
            meta,
            property_id=a["tokenId"],
            gross_amount=a["grossRent"],
            fee_amount=a["miscellaneousFee"],
            net_amount=a["netAmount"],
            depositor=a["manager"],
        )
    ]


def _reward_claimed(meta, a):
    return [RewardClaimed(meta, a["tokenId"], a["holder"], a["amount"])]


def _listing_created(meta, a):
    return [ListingCreated(meta, a["listingId"], a["tokenId"], a["seller"], a["amount"], a["pricePerShare"])]


def _listing_cancelled(meta, a):
    return [ListingCancelled(meta, a["listingId"], a["seller"])]


def _purchase_executed(meta, a):
    return [ListingPurchased(meta, a["listingId"], a["buyer"], a["amount"], a["totalPrice"])]


BUILDERS: Dict[str, Builder] = {
    "PropertyCreated": _property_created,
    "TransferSingle": _transfer_single,
    "TransferBatch": _transfer_batch,
    "RentDeposited": _rent_deposited,
    "FundsDepositedByManager": _funds_deposited_by_manager,
    "RewardClaimed": _reward_claimed,
    "ListingCreated": _listing_created,
    "ListingCancelled": _listing_cancelled,
    "PurchaseExecuted": _purchase_executed,
}


class EventDecoder:
    """
    Decode raw logs for a fixed set of sources.

    Usage:
        decoder = EventDecoder(sources)
        for event in decoder.decode(raw_log):
            ...
    """

    def __init__(self, sources: Iterable[Source]) -> None:
        self._index: Dict[Tuple[str, str], Tuple[str, EventSpec]] = {}
        for source in sources:
            for spec in source.events:
                if spec.name not in BUILDERS:
                    raise ValueError(f"no decoder for event {spec.name}")
                self._index[(source.address.lower(), spec.topic.lower())] = (source.name, spec)

    def recognizes(self, raw: RawLog) -> bool:
        if not raw.topics:
            return False
        return (raw.address.lower(), raw.topics[0].lower()) in self._index

    def decode(self, raw: RawLog) -> List[Any]:
        """
        Decode one raw log.

        Returns:
            Decoded events in item order; empty for unrecognized logs

        Raises:
            DecodeError: Recognized signature with malformed payload or
                mismatched batch arrays
        """
        if not self.recognizes(raw):
            return []
        source, spec = self._index[(raw.address.lower(), raw.topics[0].lower())]
        try:
            args = spec.decode_args(tuple(t.lower() for t in raw.topics), raw.data)
        except (DecodingError, ValueError, TypeError) as ex:
            raise DecodeError(
                f"{spec.name} {raw.transaction_hash}-{raw.log_index}: {ex}"
            ) from ex

        meta = EventMeta.from_raw(source, raw)
        return BUILDERS[spec.name](meta, args)
