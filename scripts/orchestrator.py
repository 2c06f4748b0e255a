#!/usr/bin/env python3
"""
NFT Market Client — Transaction orchestration

State machines for the marketplace write flows:
- list      (approve if needed, then listNFT with the listing fee)
- buy       (buyNFT with value equal to the listing price)
- cancel    (cancelListing by the seller)
- withdraw  (withdrawProceeds when the balance is non-zero)
- mint      (optional IPFS upload, then mintNFT)

States: IDLE -> SUBMITTING -> CONFIRMING -> SUCCEEDED | FAILED.
One transaction per orchestrator at a time; a second call while busy is
rejected with FlowInProgress, never queued. Write transactions are never
retried automatically.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from common import SEPOLIA_CHAIN_ID, format_ether
from errors import (
    ApprovalRequired,
    FlowInProgress,
    MarketplaceError,
    PreconditionFailed,
    classify_error,
)
from ipfs import upload_to_ipfs
from reconcile import LocalDelta, NFTRecord
from session import Session
from utils import same_address

logger = logging.getLogger(__name__)


class FlowState(Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PendingTransaction:
    action: str
    token_id: Optional[int] = None
    state: FlowState = FlowState.IDLE
    step: Optional[str] = None
    tx_hashes: List[str] = field(default_factory=list)
    error: Optional[MarketplaceError] = None
    result: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.SUCCEEDED

    @property
    def terminal(self) -> bool:
        return self.state in (FlowState.SUCCEEDED, FlowState.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.succeeded,
            "action": self.action,
            "state": self.state.value,
            "tx_hashes": list(self.tx_hashes),
        }
        if self.token_id is not None:
            data["token_id"] = self.token_id
        if self.error is not None:
            data["step"] = self.step
            data.update(self.error.to_dict())
            data["error"] = self.error.message
        data.update(self.result)
        return data


class TransactionOrchestrator:
    """Drives write flows against a ContractGateway for one session."""

    def __init__(
        self,
        gateway,
        session: Session,
        expected_chain_id: int = SEPOLIA_CHAIN_ID,
        on_success: Optional[Callable[[PendingTransaction], None]] = None,
        uploader: Optional[Callable[[str], dict]] = None,
    ):
        self.gateway = gateway
        self.session = session
        self.expected_chain_id = expected_chain_id
        self.on_success = on_success
        self.uploader = uploader or upload_to_ipfs
        self.delta = LocalDelta()
        self.proceeds: Optional[int] = None
        self.last: Dict[str, PendingTransaction] = {}
        self._lock = threading.Lock()
        self._current: Optional[PendingTransaction] = None

    @property
    def current(self) -> Optional[PendingTransaction]:
        return self._current

    @property
    def busy(self) -> bool:
        return self._current is not None

    # --- flows ---

    def list_nft(self, token_id: int, price: int) -> PendingTransaction:
        """List an owned token at price (wei); approves the marketplace first if needed."""

        def flow(pending: PendingTransaction) -> dict:
            if price <= 0:
                raise PreconditionFailed("Price must be greater than zero")
            owner = self.gateway.owner_of(token_id)
            if not self.session.is_self(owner):
                raise PreconditionFailed(f"You do not own NFT #{token_id}")

            try:
                self._check_approval(token_id)
                pending.result["approval"] = "existing"
            except ApprovalRequired as e:
                logger.info("%s", e.message)
                self._submit(
                    pending,
                    "approve",
                    lambda: self.gateway.approve(
                        self.session, self.gateway.marketplace_address, token_id
                    ),
                )
                pending.result["approval"] = "granted"

            fee = self.gateway.get_listing_fee()
            self._submit(
                pending,
                "list",
                lambda: self.gateway.list_nft(self.session, token_id, price, fee),
            )
            return {
                "price": str(price),
                "price_eth": format_ether(price),
                "listing_fee": str(fee),
            }

        return self._run("list", token_id, flow)

    def buy_nft(self, target: Union[int, NFTRecord]) -> PendingTransaction:
        """
        Buy a listed token, paying exactly its listing price.

        Passing an NFTRecord checks the preconditions against it without any
        contract read; passing a token id reads the listing first.
        """
        token_id = target.token_id if isinstance(target, NFTRecord) else target

        def flow(pending: PendingTransaction) -> dict:
            if isinstance(target, NFTRecord):
                listed, price, seller = target.is_listed, target.price, target.seller
            else:
                listed = self.gateway.is_nft_listed(token_id)
                price, seller = self.gateway.get_listing(token_id) if listed else (None, None)

            if not listed:
                raise PreconditionFailed(f"NFT #{token_id} is not listed for sale")
            if not price or price <= 0:
                raise PreconditionFailed(f"Price for NFT #{token_id} is unknown")
            if self.session.is_self(seller):
                raise PreconditionFailed("You cannot buy your own NFT")

            self._submit(pending, "buy", lambda: self.gateway.buy_nft(self.session, token_id, price))
            self.delta.merge(LocalDelta(removed={token_id}))
            return {"price": str(price), "price_eth": format_ether(price), "seller": seller}

        return self._run("buy", token_id, flow)

    def cancel_listing(self, token_id: int) -> PendingTransaction:
        def flow(pending: PendingTransaction) -> dict:
            if not self.gateway.is_nft_listed(token_id):
                raise PreconditionFailed(f"NFT #{token_id} is not listed for sale")
            _, seller = self.gateway.get_listing(token_id)
            if not self.session.is_self(seller):
                raise PreconditionFailed("Only the seller can cancel this listing")

            self._submit(pending, "cancel", lambda: self.gateway.cancel_listing(self.session, token_id))
            self.delta.merge(LocalDelta(unlisted={token_id}))
            return {}

        return self._run("cancel", token_id, flow)

    def withdraw_proceeds(self) -> PendingTransaction:
        """Withdraw accumulated sale proceeds; the balance is read right before sending."""

        def flow(pending: PendingTransaction) -> dict:
            balance = self.gateway.get_proceeds(self.session.address)
            self.proceeds = balance
            if balance <= 0:
                raise PreconditionFailed("No proceeds to withdraw")

            self._submit(pending, "withdraw", lambda: self.gateway.withdraw_proceeds(self.session))
            self.proceeds = 0
            return {"amount": str(balance), "amount_eth": format_ether(balance)}

        return self._run("withdraw", None, flow)

    def mint_nft(
        self,
        name: str,
        description: str,
        image_url: Optional[str] = None,
        image_path: Optional[str] = None,
        attributes: str = "[]",
    ) -> PendingTransaction:
        """
        Mint a new token. A local image is pinned to IPFS first; the mint is
        not sent unless the upload succeeded.
        """

        def flow(pending: PendingTransaction) -> dict:
            if not name or not description:
                raise PreconditionFailed("Name and description are required")
            try:
                json.loads(attributes)
            except (TypeError, ValueError):
                raise PreconditionFailed("Attributes must be valid JSON")

            image = image_url
            if not image:
                if not image_path:
                    raise PreconditionFailed("Image is required")
                pending.step = "upload"
                upload = self.uploader(image_path)
                if not upload.get("success"):
                    raise MarketplaceError(f"Failed to upload image: {upload.get('error')}")
                image = upload["url"]

            predicted_id = self.gateway.get_total_nfts()
            pending.token_id = predicted_id
            self._submit(
                pending,
                "mint",
                lambda: self.gateway.mint_nft(self.session, name, description, image, attributes),
            )
            return {"image": image, "name": name}

        return self._run("mint", None, flow)

    # --- machinery ---

    def _check_approval(self, token_id: int) -> None:
        approved = self.gateway.get_approved(token_id)
        if not same_address(approved, self.gateway.marketplace_address):
            raise ApprovalRequired(f"Approving marketplace for NFT #{token_id}")

    def _begin(self, action: str, token_id: Optional[int]) -> PendingTransaction:
        with self._lock:
            if self._current is not None:
                raise FlowInProgress(
                    f"Cannot start {action}: {self._current.action} is {self._current.state.value}"
                )
            self._current = PendingTransaction(action=action, token_id=token_id)
            return self._current

    def _finish(self, pending: PendingTransaction) -> None:
        with self._lock:
            self.last[pending.action] = pending
            self._current = None

    def _submit(self, pending: PendingTransaction, step: str, send: Callable) -> dict:
        pending.step = step
        pending.state = FlowState.SUBMITTING
        handle = send()
        pending.tx_hashes.append(handle.tx_hash)

        pending.state = FlowState.CONFIRMING
        receipt = handle.wait()
        logger.info("%s confirmed: %s", step, handle.tx_hash)
        return receipt

    def _run(
        self,
        action: str,
        token_id: Optional[int],
        flow: Callable[[PendingTransaction], dict],
    ) -> PendingTransaction:
        pending = self._begin(action, token_id)
        try:
            self.session.require_signer()
            self.session.require_network(self.expected_chain_id)
            pending.result.update(flow(pending) or {})
            pending.state = FlowState.SUCCEEDED
        except Exception as e:
            pending.error = classify_error(e)
            pending.state = FlowState.FAILED
            logger.warning(
                "%s failed at %s: %s", action, pending.step or "precheck", pending.error.message
            )
        finally:
            self._finish(pending)

        if pending.succeeded and self.on_success is not None:
            self.on_success(pending)
        return pending
