#!/usr/bin/env python3
"""
NFT Market Client — On-chain ownership scan

Indexer-independent view of one address's NFTs, read straight from the
marketplace contract. Reads are strictly sequential (one RPC call at a time)
and the scan can be stopped between any two reads.
"""

import logging
import threading
from typing import Iterator, List, Optional

from metadata import MetadataResolver
from reconcile import NFTRecord
from utils import same_address

logger = logging.getLogger(__name__)


class ScanCanceled(Exception):
    pass


class OwnershipScanner:
    """
    Enumerates token ids [start, total) and yields those owned by an address.

    Usage:
        scanner = OwnershipScanner(gateway, resolver)
        for record in scanner.iter_owned_by(address):
            ...
        scanner.cancel()            # from another thread, e.g. on teardown
        scanner.iter_owned_by(address, start=scanner.next_token_id)  # resume
    """

    def __init__(self, gateway, resolver: MetadataResolver):
        self.gateway = gateway
        self.resolver = resolver
        self.total: Optional[int] = None
        self.next_token_id = 0
        self.failures = 0
        self._cancel = threading.Event()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def _check(self) -> None:
        if self._cancel.is_set():
            raise ScanCanceled()

    def iter_owned_by(self, address: str, start: int = 0) -> Iterator[NFTRecord]:
        """
        Lazily yield NFTRecords owned by address.

        Cancel state is reset on this call. A cancel() before the first
        next() ends the scan without any contract read.

        Raises:
            Exception from getTotalNFTs (nothing to scan without the total)
        """
        self._cancel.clear()
        self.next_token_id = start
        self.total = None
        return self._scan(address, start)

    def _scan(self, address: str, start: int) -> Iterator[NFTRecord]:
        if self._cancel.is_set():
            logger.info("Scan canceled before start")
            return
        self.total = int(self.gateway.get_total_nfts())
        logger.info("Scanning tokens %d..%d for %s", start, self.total, address)

        for token_id in range(start, self.total):
            if self._cancel.is_set():
                logger.info("Scan canceled at token %d", token_id)
                return
            try:
                record = self._read_token(token_id, address)
            except ScanCanceled:
                logger.info("Scan canceled at token %d", token_id)
                return
            except Exception as e:
                self.failures += 1
                logger.warning("Skipping token %d: %s", token_id, e)
                record = None

            self.next_token_id = token_id + 1
            if record is not None:
                yield record

    def scan_owned_by(self, address: str) -> List[NFTRecord]:
        return list(self.iter_owned_by(address))

    def _read_token(self, token_id: int, address: str) -> Optional[NFTRecord]:
        owner = self.gateway.owner_of(token_id)
        self._check()
        if not same_address(owner, address):
            return None

        listed = bool(self.gateway.is_nft_listed(token_id))
        self._check()
        price = seller = None
        if listed:
            price, seller = self.gateway.get_listing(token_id)
            self._check()

        token_uri = self.gateway.token_uri(token_id)
        self._check()
        metadata = self.resolver.resolve(token_uri)
        self._check()

        return NFTRecord(
            token_id=token_id,
            owner=owner,
            seller=seller if listed else None,
            price=int(price) if listed else None,
            token_uri=token_uri,
            is_listed=listed,
            metadata=metadata,
        )
