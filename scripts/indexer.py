#!/usr/bin/env python3
"""
NFT Market Client — Event index (subgraph) reader

Queries the marketplace subgraph for minted, actively-listed, sold, canceled
and proceeds-withdrawn records. The feed is eventually consistent and may lag
the chain; it is never the only source for a connected wallet's holdings.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from errors import IndexerUnavailable
from utils import api_request, create_http_session, load_config

logger = logging.getLogger(__name__)


# =============================================================================
# GraphQL documents
# =============================================================================

GET_MINTED_NFTS = """
query GetAllMintedNFTs($first: Int!, $skip: Int!) {
  nftminteds(first: $first, orderBy: blockTimestamp, orderDirection: desc, skip: $skip) {
    id
    owner
    tokenId
    tokenURI
    blockTimestamp
  }
}
"""

GET_LISTED_NFTS = """
query GetAllListings($first: Int!, $skip: Int!) {
  activeListings(first: $first, orderDirection: desc, skip: $skip) {
    id
    tokenId
    seller
    price
    tokenURI
  }
}
"""

GET_SOLD_NFTS = """
query GetAllSales($first: Int!, $skip: Int!) {
  nftSolds(first: $first, skip: $skip, orderBy: timestamp, orderDirection: desc) {
    id
    tokenId
    seller
    buyer
    price
    timestamp
  }
}
"""

GET_CANCELED_LISTINGS = """
query GetAllCanceledListings($first: Int!, $skip: Int!) {
  nftCanceleds(first: $first, skip: $skip, orderBy: timestamp, orderDirection: desc) {
    id
    tokenId
    seller
    timestamp
  }
}
"""

GET_PROCEEDS_WITHDRAWN = """
query GetProceedsWithdrawn($first: Int!, $skip: Int!) {
  proceedsWithdrawns(first: $first, skip: $skip, orderBy: timestamp, orderDirection: desc) {
    id
    seller
    amount
    timestamp
  }
}
"""

GET_LISTING_FEE_CHANGES = """
query GetListingFeeChanges($first: Int!, $skip: Int!) {
  listingFeeUpdateds(first: $first, skip: $skip, orderBy: timestamp, orderDirection: desc) {
    id
    oldFee
    newFee
    timestamp
  }
}
"""

GET_PURCHASES_BY_BUYER = """
query GetPurchasesByBuyer($buyer: Bytes!, $first: Int!, $skip: Int!) {
  nftSolds(where: {buyer: $buyer}, first: $first, skip: $skip) {
    id
    tokenId
    seller
    price
    timestamp
  }
}
"""

INT_FIELDS = ("tokenId", "price", "amount", "oldFee", "newFee", "timestamp", "blockTimestamp")


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Numeric subgraph fields (BigInt strings) become ints; unparsable become None."""
    record = dict(raw)
    for field in INT_FIELDS:
        if field in record:
            record[field] = _to_int(record[field])
    return record


# =============================================================================
# Event index
# =============================================================================


class EventIndex:
    """Read-only client for the marketplace subgraph."""

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        retries: int = 3,
    ):
        if not url:
            raise ValueError(
                "Subgraph URL not configured. Run: utils.py config set subgraph_url <url>"
            )
        self.url = url
        self.timeout = timeout
        self.session = session or create_http_session(retries=retries, timeout=timeout)

    def query(self, document: str, variables: Optional[dict] = None) -> Dict[str, Any]:
        """
        Run a GraphQL query and return its ``data`` object.

        Raises:
            IndexerUnavailable: transport failure, HTTP error or GraphQL errors
        """
        result = api_request(
            self.url,
            method="POST",
            headers={"Content-Type": "application/json"},
            json_data={"query": document, "variables": variables or {}},
            timeout=self.timeout,
            session=self.session,
        )

        if not result["success"]:
            raise IndexerUnavailable(f"Indexer request failed: {result.get('error')}")

        payload = result["data"]
        if not isinstance(payload, dict):
            raise IndexerUnavailable("Indexer returned a non-JSON response")
        if payload.get("errors"):
            messages = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e)
                for e in payload["errors"]
            )
            raise IndexerUnavailable(f"Indexer query error: {messages}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise IndexerUnavailable("Indexer response has no data")
        return data

    def _collection(self, document: str, key: str, variables: dict) -> List[Dict[str, Any]]:
        data = self.query(document, variables)
        items = data.get(key) or []
        logger.debug("Indexer %s: %d records", key, len(items))
        return [normalize_record(item) for item in items if isinstance(item, dict)]

    def get_minted(self, first: int = 12, skip: int = 0) -> List[Dict[str, Any]]:
        return self._collection(GET_MINTED_NFTS, "nftminteds", {"first": first, "skip": skip})

    def get_listed(self, first: int = 12, skip: int = 0) -> List[Dict[str, Any]]:
        return self._collection(GET_LISTED_NFTS, "activeListings", {"first": first, "skip": skip})

    def get_sold(self, first: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        return self._collection(GET_SOLD_NFTS, "nftSolds", {"first": first, "skip": skip})

    def get_canceled(self, first: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        return self._collection(
            GET_CANCELED_LISTINGS, "nftCanceleds", {"first": first, "skip": skip}
        )

    def get_proceeds_withdrawn(self, first: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        return self._collection(
            GET_PROCEEDS_WITHDRAWN, "proceedsWithdrawns", {"first": first, "skip": skip}
        )

    def get_listing_fee_changes(self, first: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        return self._collection(
            GET_LISTING_FEE_CHANGES, "listingFeeUpdateds", {"first": first, "skip": skip}
        )

    def get_purchases_by_buyer(
        self, buyer: str, first: int = 100, skip: int = 0
    ) -> List[Dict[str, Any]]:
        # Bytes filters match the lowercase hex the subgraph stores
        return self._collection(
            GET_PURCHASES_BY_BUYER,
            "nftSolds",
            {"buyer": buyer.lower(), "first": first, "skip": skip},
        )


def index_from_config(config: Optional[dict] = None) -> EventIndex:
    config = config or load_config()
    return EventIndex(config.get("subgraph_url", ""))
