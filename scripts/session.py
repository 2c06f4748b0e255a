#!/usr/bin/env python3
"""
NFT Market Client — Session context

Connection state (wallet address, chain id, signer) travels explicitly into
every component call instead of living in module globals.
"""

from dataclasses import dataclass
from typing import Any, Optional

from errors import WalletUnavailable, WrongNetwork
from utils import same_address


@dataclass(frozen=True)
class Session:
    address: Optional[str] = None
    chain_id: Optional[int] = None
    account: Any = None  # eth_account LocalAccount, never serialized

    @property
    def connected(self) -> bool:
        return bool(self.address)

    @property
    def can_sign(self) -> bool:
        return self.account is not None and bool(self.address)

    def is_self(self, address: Optional[str]) -> bool:
        return same_address(self.address, address)

    def require_signer(self) -> None:
        if not self.can_sign:
            raise WalletUnavailable("No wallet connected. Import or create one with wallet.py")

    def require_network(self, expected_chain_id: int) -> None:
        if self.chain_id is None or int(self.chain_id) != int(expected_chain_id):
            raise WrongNetwork(expected_chain_id, self.chain_id)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "chain_id": self.chain_id,
            "can_sign": self.can_sign,
        }


def read_only_session(address: Optional[str] = None, chain_id: Optional[int] = None) -> Session:
    """Session without signing capability (reads may still proceed)."""
    return Session(address=address, chain_id=chain_id, account=None)
