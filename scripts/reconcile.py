#!/usr/bin/env python3
"""
NFT Market Client — Listing reconciliation

Merges indexed listing and mint records into one deduplicated set of
NFTRecords. Listing state wins over mint state for the same token. Optimistic
local changes (a purchase, a canceled listing) travel as a LocalDelta applied
on top of the reconciled set until a fresh reconciliation reflects them.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from common import format_ether
from errors import IndexerUnavailable
from metadata import Metadata, MetadataResolver

logger = logging.getLogger(__name__)


# =============================================================================
# Records
# =============================================================================


@dataclass
class NFTRecord:
    token_id: int
    owner: Optional[str] = None
    seller: Optional[str] = None
    price: Optional[int] = None
    token_uri: str = ""
    is_listed: bool = False
    metadata: Optional[Metadata] = None
    record_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "token_id": self.token_id,
            "owner": self.owner,
            "is_listed": self.is_listed,
            "token_uri": self.token_uri,
        }
        if self.is_listed:
            data["seller"] = self.seller
            data["price"] = str(self.price)
            data["price_eth"] = format_ether(self.price)
        if self.metadata is not None:
            data.update(self.metadata.to_dict())
        if self.record_id:
            data["id"] = self.record_id
        return data


def parse_token_id(value: Any) -> Optional[int]:
    """Non-negative int token id, or None when missing or malformed."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        token_id = int(value)
    except (TypeError, ValueError):
        return None
    return token_id if token_id >= 0 else None


def _price(value: Any) -> Optional[int]:
    try:
        price = int(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


# =============================================================================
# Optimistic deltas
# =============================================================================


@dataclass
class LocalDelta:
    """Hints from confirmed local transactions, not a source of truth."""

    removed: Set[int] = field(default_factory=set)
    unlisted: Set[int] = field(default_factory=set)

    def merge(self, other: "LocalDelta") -> "LocalDelta":
        self.removed |= other.removed
        self.unlisted |= other.unlisted
        self.unlisted -= self.removed
        return self

    def __bool__(self) -> bool:
        return bool(self.removed or self.unlisted)


def apply_delta(records: List[NFTRecord], delta: Optional[LocalDelta]) -> List[NFTRecord]:
    """Hide bought tokens and mark canceled listings as unlisted."""
    if not delta:
        return list(records)

    result = []
    for record in records:
        if record.token_id in delta.removed:
            continue
        if record.token_id in delta.unlisted and record.is_listed:
            record = NFTRecord(
                token_id=record.token_id,
                owner=record.owner or record.seller,
                token_uri=record.token_uri,
                is_listed=False,
                metadata=record.metadata,
                record_id=record.record_id,
            )
        result.append(record)
    return result


def prune_delta(delta: LocalDelta, records: List[NFTRecord]) -> LocalDelta:
    """
    Drop hints a fresh reconciliation no longer needs.

    A removed token is forgotten once the feed stops listing it; an unlisted
    token is forgotten once the feed shows it unlisted (or gone).
    """
    listed = {r.token_id for r in records if r.is_listed}
    return LocalDelta(
        removed={t for t in delta.removed if t in listed},
        unlisted={t for t in delta.unlisted if t in listed},
    )


# =============================================================================
# Reconciler
# =============================================================================


class ListingReconciler:
    """Builds the marketplace feed from listing and mint events."""

    def __init__(
        self,
        resolver: MetadataResolver,
        max_workers: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.resolver = resolver
        self.max_workers = max_workers
        self.cancel_event = cancel_event or threading.Event()
        self.malformed = 0

    def cancel(self) -> None:
        """Stop the running pass, or the next one if none is running; that pass returns []."""
        self.cancel_event.set()

    def reconcile(self, listings: Iterable[dict], mints: Iterable[dict]) -> List[NFTRecord]:
        """
        Merge listings and mints; listed records come first.

        Args:
            listings: activeListing records (tokenId, seller, price, tokenURI)
            mints: nftMinted records (tokenId, owner, tokenURI)

        Returns:
            One NFTRecord per distinct token id
        """
        self.malformed = 0
        records: List[NFTRecord] = []
        seen: Set[int] = set()

        for listing in listings or []:
            token_id = parse_token_id(listing.get("tokenId"))
            price = _price(listing.get("price"))
            if token_id is None or price is None or not listing.get("seller"):
                self.malformed += 1
                continue
            if token_id in seen:
                continue
            seen.add(token_id)
            records.append(
                NFTRecord(
                    token_id=token_id,
                    seller=listing["seller"],
                    price=price,
                    token_uri=listing.get("tokenURI") or "",
                    is_listed=True,
                    record_id=listing.get("id"),
                )
            )

        for mint in mints or []:
            token_id = parse_token_id(mint.get("tokenId"))
            if token_id is None:
                self.malformed += 1
                continue
            if token_id in seen:
                continue
            seen.add(token_id)
            records.append(
                NFTRecord(
                    token_id=token_id,
                    owner=mint.get("owner"),
                    token_uri=mint.get("tokenURI") or "",
                    record_id=mint.get("id"),
                )
            )

        if self.malformed:
            logger.warning("Skipped %d malformed indexer records", self.malformed)

        self._attach_metadata(records)
        if self.cancel_event.is_set():
            # A cancel applies to one pass; the next reconcile runs normally
            self.cancel_event.clear()
            logger.info("Reconciliation canceled; discarding %d records", len(records))
            return []
        return records

    def reconcile_from_index(self, index, first: int = 12, skip: int = 0) -> List[NFTRecord]:
        """Reconcile straight from the EventIndex; an unreachable index yields an empty feed."""
        try:
            listings = index.get_listed(first=first, skip=skip)
            mints = index.get_minted(first=first, skip=skip)
        except IndexerUnavailable as e:
            logger.warning("Indexer unavailable, showing empty feed: %s", e)
            return []
        return self.reconcile(listings, mints)

    def _attach_metadata(self, records: List[NFTRecord]) -> None:
        pending = [r for r in records if r.metadata is None]
        if not pending:
            return

        if self.max_workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(self._resolve_one, pending))
        else:
            results = [self._resolve_one(r) for r in pending]

        for record, metadata in results:
            if metadata is not None:
                record.metadata = metadata

    def _resolve_one(self, record: NFTRecord) -> Tuple[NFTRecord, Optional[Metadata]]:
        if self.cancel_event.is_set():
            return record, None
        return record, self.resolver.resolve(record.token_uri)
