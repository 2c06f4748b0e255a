#!/usr/bin/env python3
"""
NFT Market Client — Marketplace contract gateway

Typed read/write surface over the deployed marketplace (an ERC-721 that also
holds listings and seller proceeds). Reads are plain eth_calls; writes are
built, signed with the session's local account and sent raw. Every write
returns a TxHandle whose wait() blocks until the receipt or the timeout.
"""

import os
import logging
from functools import lru_cache
from typing import Optional, Tuple

from web3 import Web3
from web3.exceptions import TimeExhausted

from errors import TransactionReverted, TransactionTimeout
from session import Session
from utils import load_config, normalize_address

logger = logging.getLogger(__name__)

DEFAULT_TX_TIMEOUT = 120

_TOKEN_ID = {"internalType": "uint256", "name": "tokenId", "type": "uint256"}

MARKETPLACE_ABI = [
    # ERC-721
    {
        "inputs": [_TOKEN_ID],
        "name": "ownerOf",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_TOKEN_ID],
        "name": "tokenURI",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_TOKEN_ID],
        "name": "getApproved",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            _TOKEN_ID,
        ],
        "name": "approve",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # Marketplace
    {
        "inputs": [_TOKEN_ID],
        "name": "isNFTListed",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_TOKEN_ID],
        "name": "getListing",
        "outputs": [
            {"internalType": "uint256", "name": "price", "type": "uint256"},
            {"internalType": "address", "name": "seller", "type": "address"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getListingFee",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_TOKEN_ID, {"internalType": "uint256", "name": "price", "type": "uint256"}],
        "name": "listNFT",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [_TOKEN_ID],
        "name": "buyNFT",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [_TOKEN_ID],
        "name": "cancelListing",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "seller", "type": "address"}],
        "name": "getProceeds",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "withdrawProceeds",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getTotalNFTs",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "string", "name": "name", "type": "string"},
            {"internalType": "string", "name": "description", "type": "string"},
            {"internalType": "string", "name": "image", "type": "string"},
            {"internalType": "string", "name": "attributes", "type": "string"},
        ],
        "name": "mintNFT",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


# =============================================================================
# Transaction handle
# =============================================================================


class TxHandle:
    """A submitted transaction awaiting inclusion."""

    def __init__(self, w3: Web3, tx_hash, timeout: int = DEFAULT_TX_TIMEOUT):
        self.w3 = w3
        self.tx_hash = Web3.to_hex(tx_hash)
        self.timeout = timeout

    def wait(self, timeout: Optional[int] = None) -> dict:
        """
        Block until the receipt is available.

        Raises:
            TransactionTimeout: receipt not seen in time (dropped or stuck)
            TransactionReverted: mined with status 0
        """
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                self.tx_hash, timeout=timeout or self.timeout
            )
        except TimeExhausted as e:
            raise TransactionTimeout(
                f"Transaction {self.tx_hash} not confirmed in time", raw=str(e)
            )

        if receipt.get("status") != 1:
            raise TransactionReverted(f"Transaction {self.tx_hash} reverted")
        return dict(receipt)

    def __repr__(self) -> str:
        return f"TxHandle({self.tx_hash})"


# =============================================================================
# Gateway
# =============================================================================


class ContractGateway:
    """Read/write access to the marketplace contract."""

    def __init__(self, w3: Web3, marketplace_address: str, tx_timeout: int = DEFAULT_TX_TIMEOUT):
        self.w3 = w3
        self.marketplace_address = normalize_address(marketplace_address)
        self.tx_timeout = tx_timeout
        self.contract = w3.eth.contract(address=self.marketplace_address, abi=MARKETPLACE_ABI)

    # --- reads ---

    def get_chain_id(self) -> int:
        return int(self.w3.eth.chain_id)

    def get_balance(self, address: str) -> int:
        return int(self.w3.eth.get_balance(normalize_address(address)))

    def owner_of(self, token_id: int) -> str:
        return self.contract.functions.ownerOf(token_id).call()

    def token_uri(self, token_id: int) -> str:
        return self.contract.functions.tokenURI(token_id).call()

    def is_nft_listed(self, token_id: int) -> bool:
        return bool(self.contract.functions.isNFTListed(token_id).call())

    def get_listing(self, token_id: int) -> Tuple[int, str]:
        """Active listing as (price in wei, seller)."""
        price, seller = self.contract.functions.getListing(token_id).call()
        return int(price), seller

    def get_approved(self, token_id: int) -> str:
        return self.contract.functions.getApproved(token_id).call()

    def get_listing_fee(self) -> int:
        return int(self.contract.functions.getListingFee().call())

    def get_proceeds(self, address: str) -> int:
        return int(self.contract.functions.getProceeds(normalize_address(address)).call())

    def get_total_nfts(self) -> int:
        return int(self.contract.functions.getTotalNFTs().call())

    # --- writes ---

    def approve(self, session: Session, operator: str, token_id: int) -> TxHandle:
        return self._send(
            session, self.contract.functions.approve(normalize_address(operator), token_id)
        )

    def list_nft(self, session: Session, token_id: int, price: int, fee: int) -> TxHandle:
        return self._send(session, self.contract.functions.listNFT(token_id, price), value=fee)

    def buy_nft(self, session: Session, token_id: int, price: int) -> TxHandle:
        return self._send(session, self.contract.functions.buyNFT(token_id), value=price)

    def cancel_listing(self, session: Session, token_id: int) -> TxHandle:
        return self._send(session, self.contract.functions.cancelListing(token_id))

    def withdraw_proceeds(self, session: Session) -> TxHandle:
        return self._send(session, self.contract.functions.withdrawProceeds())

    def mint_nft(
        self, session: Session, name: str, description: str, image: str, attributes: str
    ) -> TxHandle:
        return self._send(
            session, self.contract.functions.mintNFT(name, description, image, attributes)
        )

    def _send(self, session: Session, fn, value: int = 0) -> TxHandle:
        session.require_signer()
        sender = normalize_address(session.address)

        tx = fn.build_transaction(
            {
                "from": sender,
                "value": value,
                "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
            }
        )
        signed = session.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)

        handle = TxHandle(self.w3, tx_hash, self.tx_timeout)
        logger.info("Sent %s from %s: %s", fn.fn_name, sender, handle.tx_hash)
        return handle


# =============================================================================
# Factory
# =============================================================================


@lru_cache(maxsize=10)
def web3_client(rpc_url: str) -> Web3:
    """Lazily-initialized Web3 client for a specific RPC URL."""
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 10}))


def gateway_from_config(config: Optional[dict] = None) -> ContractGateway:
    """Build the gateway from the config file (and NFT_MARKET_RPC_URL)."""
    config = config or load_config()
    marketplace = config.get("marketplace_address")
    if not marketplace:
        raise ValueError(
            "Marketplace address not configured. Run: utils.py config set marketplace_address <address>"
        )
    rpc_url = os.environ.get("NFT_MARKET_RPC_URL") or config.get("rpc_url", "")
    return ContractGateway(
        web3_client(rpc_url),
        marketplace,
        tx_timeout=int(config.get("tx_timeout", DEFAULT_TX_TIMEOUT)),
    )
