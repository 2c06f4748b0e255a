#!/usr/bin/env python3
"""
NFT Market Client — Marketplace operations

- Marketplace feed (subgraph + metadata)
- NFTs owned by a wallet (direct on-chain scan)
- NFT details (contract reads)
- List / buy / cancel (marketplace contract)
- Proceeds balance and withdrawal
- Mint (image pinned to IPFS)
- Event history (sales, cancels, withdrawals, fee changes, purchases)

Write commands preview by default; --confirm signs and sends.
"""

import os
import sys
import json
import argparse
import getpass
import logging
from pathlib import Path
from typing import Optional, Tuple

# Local imports
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import load_config, is_valid_address, setup_logging  # noqa: E402
from common import (  # noqa: E402
    COMMON_EPILOG,
    ERROR_MESSAGES,
    SEPOLIA_CHAIN_ID,
    format_ether,
    network_name,
    parse_ether,
)
from errors import format_error, format_transaction_error  # noqa: E402
from contract import ContractGateway, gateway_from_config  # noqa: E402
from indexer import index_from_config  # noqa: E402
from metadata import resolver_from_config  # noqa: E402
from orchestrator import PendingTransaction, TransactionOrchestrator  # noqa: E402
from reconcile import ListingReconciler, LocalDelta, apply_delta, prune_delta  # noqa: E402
from scanner import OwnershipScanner  # noqa: E402
from session import Session  # noqa: E402
from wallet import WalletStorage, load_session  # noqa: E402

logger = logging.getLogger(__name__)

HISTORY_KINDS = ("sales", "canceled", "withdrawals", "fees", "purchases")


# =============================================================================
# Helpers
# =============================================================================


def resolve_wallet_address(
    wallet_identifier: Optional[str], password: Optional[str] = None
) -> Optional[str]:
    """Resolve a wallet label or address to an address."""
    wallet_identifier = wallet_identifier or load_config().get("default_wallet")
    if not wallet_identifier:
        return None
    if is_valid_address(wallet_identifier):
        return wallet_identifier

    if password:
        wallet_data = WalletStorage(password).get_wallet(wallet_identifier, include_secrets=False)
        if wallet_data:
            return wallet_data["address"]

    return None


def open_session(
    wallet_identifier: Optional[str], password: Optional[str]
) -> Tuple[ContractGateway, Session, dict]:
    """Gateway plus a signing session bound to the provider's current chain."""
    config = load_config()
    gateway = gateway_from_config(config)
    session = load_session(wallet_identifier, password, chain_id=gateway.get_chain_id())
    return gateway, session, config


def _orchestrator(gateway: ContractGateway, session: Session, config: dict) -> TransactionOrchestrator:
    return TransactionOrchestrator(
        gateway,
        session,
        expected_chain_id=int(config.get("chain_id", SEPOLIA_CHAIN_ID)),
        on_success=lambda p: logger.info(
            "%s succeeded: %s", p.action, ", ".join(p.tx_hashes)
        ),
    )


def _flow_result(pending: PendingTransaction) -> dict:
    if pending.succeeded:
        return pending.to_dict()
    result = format_transaction_error(
        pending.error, tx_hash=pending.tx_hashes[-1] if pending.tx_hashes else None
    )
    result.update(
        {
            "action": pending.action,
            "state": pending.state.value,
            "step": pending.step,
            "tx_hashes": list(pending.tx_hashes),
        }
    )
    if pending.token_id is not None:
        result["token_id"] = pending.token_id
    return result


def _with_feed(
    orchestrator: TransactionOrchestrator, pending: PendingTransaction, refresh: bool
) -> dict:
    """Flow result, plus the first feed page with the flow's local hints applied."""
    result = _flow_result(pending)
    if refresh and pending.succeeded:
        feed = get_feed(delta=orchestrator.delta)
        result["feed"] = feed.get("nfts", [])
    return result


def _preview(result: dict, verb: str) -> dict:
    result["success"] = True
    result["confirmed"] = False
    result["message"] = f"Preview only. Use --confirm to {verb}."
    return result


# =============================================================================
# Read commands
# =============================================================================


def get_feed(
    page: int = 1,
    page_size: Optional[int] = None,
    workers: int = 4,
    delta: Optional[LocalDelta] = None,
) -> dict:
    """
    Marketplace feed: active listings first, then unlisted mints.

    An unreachable indexer yields an empty feed rather than an error.

    Args:
        delta: Local hints from just-confirmed buys and cancels. Hints the
            indexer already reflects are dropped from it in place; the rest
            are applied on top of the indexed view.
    """
    config = load_config()
    page_size = page_size or int(config.get("page_size", 12))
    if not config.get("subgraph_url"):
        return {"success": False, "error": ERROR_MESSAGES["missing_subgraph"]}

    reconciler = ListingReconciler(resolver_from_config(config), max_workers=workers)
    records = reconciler.reconcile_from_index(
        index_from_config(config), first=page_size, skip=(page - 1) * page_size
    )
    if delta is not None:
        hints = prune_delta(delta, records)
        delta.removed, delta.unlisted = hints.removed, hints.unlisted
        records = apply_delta(records, hints)

    return {
        "success": True,
        "page": page,
        "page_size": page_size,
        "count": len(records),
        "listed": sum(1 for r in records if r.is_listed),
        "malformed": reconciler.malformed,
        "nfts": [r.to_dict() for r in records],
    }


def get_my_nfts(
    wallet_identifier: Optional[str],
    password: Optional[str] = None,
    start: int = 0,
    limit: Optional[int] = None,
) -> dict:
    """NFTs owned by a wallet, read directly from the contract."""
    address = resolve_wallet_address(wallet_identifier, password)
    if not address:
        return {
            "success": False,
            "error": ERROR_MESSAGES["wallet_not_found"].format(wallet_identifier),
        }

    config = load_config()
    scanner = OwnershipScanner(gateway_from_config(config), resolver_from_config(config))

    nfts = []
    for record in scanner.iter_owned_by(address, start=start):
        nfts.append(record.to_dict())
        if limit and len(nfts) >= limit:
            scanner.cancel()
            break

    result = {
        "success": True,
        "address": address,
        "total_supply": scanner.total,
        "count": len(nfts),
        "skipped": scanner.failures,
        "nfts": nfts,
    }
    if scanner.total is not None and scanner.next_token_id < scanner.total:
        result["next_token_id"] = scanner.next_token_id
    return result


def get_nft_info(token_id: int) -> dict:
    """Owner, listing and metadata of one token."""
    config = load_config()
    gateway = gateway_from_config(config)

    owner = gateway.owner_of(token_id)
    token_uri = gateway.token_uri(token_id)
    listed = gateway.is_nft_listed(token_id)

    result = {
        "success": True,
        "token_id": token_id,
        "owner": owner,
        "token_uri": token_uri,
        "is_listed": listed,
    }
    if listed:
        price, seller = gateway.get_listing(token_id)
        result["seller"] = seller
        result["price"] = str(price)
        result["price_eth"] = format_ether(price)

    result["metadata"] = resolver_from_config(config).resolve(token_uri).to_dict()
    return result


def get_proceeds(wallet_identifier: Optional[str], password: Optional[str] = None) -> dict:
    """Accumulated sale proceeds and the current listing fee."""
    address = resolve_wallet_address(wallet_identifier, password)
    if not address:
        return {
            "success": False,
            "error": ERROR_MESSAGES["wallet_not_found"].format(wallet_identifier),
        }

    gateway = gateway_from_config()
    proceeds = gateway.get_proceeds(address)
    fee = gateway.get_listing_fee()
    chain_id = gateway.get_chain_id()

    return {
        "success": True,
        "address": address,
        "network": network_name(chain_id),
        "proceeds": str(proceeds),
        "proceeds_eth": format_ether(proceeds),
        "listing_fee": str(fee),
        "listing_fee_eth": format_ether(fee),
    }


def get_history(
    kind: str,
    first: int = 100,
    skip: int = 0,
    wallet_identifier: Optional[str] = None,
    password: Optional[str] = None,
) -> dict:
    """Indexed marketplace events of one kind."""
    index = index_from_config()

    if kind == "sales":
        events = index.get_sold(first=first, skip=skip)
    elif kind == "canceled":
        events = index.get_canceled(first=first, skip=skip)
    elif kind == "withdrawals":
        events = index.get_proceeds_withdrawn(first=first, skip=skip)
    elif kind == "fees":
        events = index.get_listing_fee_changes(first=first, skip=skip)
    elif kind == "purchases":
        buyer = resolve_wallet_address(wallet_identifier, password)
        if not buyer:
            return {"success": False, "error": "Buyer wallet required for purchases history"}
        events = index.get_purchases_by_buyer(buyer, first=first, skip=skip)
    else:
        return {"success": False, "error": f"Unknown history kind: {kind}"}

    for event in events:
        for key in ("price", "amount", "newFee", "oldFee"):
            if event.get(key) is not None:
                event[f"{key}_eth"] = format_ether(event[key])
                event[key] = str(event[key])

    return {"success": True, "kind": kind, "count": len(events), "events": events}


# =============================================================================
# Write commands
# =============================================================================


def list_nft(
    token_id: int,
    price_eth: str,
    wallet_identifier: Optional[str],
    password: Optional[str],
    confirm: bool = False,
) -> dict:
    """Put an owned NFT up for sale (approving the marketplace first if needed)."""
    price = parse_ether(price_eth)
    gateway, session, config = open_session(wallet_identifier, password)

    if not confirm:
        approved = gateway.get_approved(token_id)
        fee = gateway.get_listing_fee()
        return _preview(
            {
                "action": "list_nft",
                "token_id": token_id,
                "seller": session.address,
                "price": str(price),
                "price_eth": format_ether(price),
                "listing_fee": str(fee),
                "listing_fee_eth": format_ether(fee),
                "needs_approval": approved.lower() != gateway.marketplace_address.lower(),
            },
            "list",
        )

    return _flow_result(_orchestrator(gateway, session, config).list_nft(token_id, price))


def buy_nft(
    token_id: int,
    wallet_identifier: Optional[str],
    password: Optional[str],
    confirm: bool = False,
    refresh: bool = False,
) -> dict:
    """Buy a listed NFT at its listing price."""
    gateway, session, config = open_session(wallet_identifier, password)

    if not confirm:
        if not gateway.is_nft_listed(token_id):
            return {"success": False, "error": f"NFT #{token_id} is not listed for sale"}
        price, seller = gateway.get_listing(token_id)
        return _preview(
            {
                "action": "buy_nft",
                "token_id": token_id,
                "buyer": session.address,
                "seller": seller,
                "price": str(price),
                "price_eth": format_ether(price),
            },
            "buy",
        )

    orchestrator = _orchestrator(gateway, session, config)
    return _with_feed(orchestrator, orchestrator.buy_nft(token_id), refresh)


def cancel_listing(
    token_id: int,
    wallet_identifier: Optional[str],
    password: Optional[str],
    confirm: bool = False,
    refresh: bool = False,
) -> dict:
    """Take a listed NFT off the market."""
    gateway, session, config = open_session(wallet_identifier, password)

    if not confirm:
        listed = gateway.is_nft_listed(token_id)
        return _preview(
            {"action": "cancel_listing", "token_id": token_id, "is_listed": listed},
            "cancel",
        )

    orchestrator = _orchestrator(gateway, session, config)
    return _with_feed(orchestrator, orchestrator.cancel_listing(token_id), refresh)


def withdraw(
    wallet_identifier: Optional[str], password: Optional[str], confirm: bool = False
) -> dict:
    """Withdraw accumulated sale proceeds."""
    gateway, session, config = open_session(wallet_identifier, password)

    if not confirm:
        proceeds = gateway.get_proceeds(session.address) if session.address else 0
        return _preview(
            {
                "action": "withdraw_proceeds",
                "address": session.address,
                "proceeds": str(proceeds),
                "proceeds_eth": format_ether(proceeds),
            },
            "withdraw",
        )

    return _flow_result(_orchestrator(gateway, session, config).withdraw_proceeds())


def mint_nft(
    name: str,
    description: str,
    wallet_identifier: Optional[str],
    password: Optional[str],
    image: Optional[str] = None,
    image_url: Optional[str] = None,
    attributes: str = "[]",
    confirm: bool = False,
) -> dict:
    """Mint a new NFT; a local image file is pinned to IPFS first."""
    gateway, session, config = open_session(wallet_identifier, password)

    if not confirm:
        return _preview(
            {
                "action": "mint_nft",
                "name": name,
                "description": description,
                "image": image_url or image,
                "attributes": attributes,
                "predicted_token_id": gateway.get_total_nfts(),
            },
            "mint",
        )

    pending = _orchestrator(gateway, session, config).mint_nft(
        name, description, image_url=image_url, image_path=image, attributes=attributes
    )
    return _flow_result(pending)


# =============================================================================
# CLI
# =============================================================================


def main():
    parser = argparse.ArgumentParser(
        description="NFT marketplace operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Marketplace feed
  %(prog)s feed --page 1

  # NFTs owned by a wallet (on-chain scan)
  %(prog)s mine --wallet trading

  # NFT details
  %(prog)s info --token 3

  # List for sale (preview, then send)
  %(prog)s list --token 3 --price 0.01 --wallet trading
  %(prog)s list --token 3 --price 0.01 --wallet trading --confirm

  # Buy
  %(prog)s buy --token 3 --wallet trading --confirm
  %(prog)s buy --token 3 --wallet trading --confirm --refresh

  # Cancel a listing
  %(prog)s cancel --token 3 --wallet trading --confirm

  # Proceeds
  %(prog)s proceeds --wallet trading
  %(prog)s withdraw --wallet trading --confirm

  # Mint
  %(prog)s mint --name "Fox" --description "A fox" --image fox.png --wallet trading --confirm

  # History
  %(prog)s history sales
  %(prog)s history purchases --wallet trading
"""
        + COMMON_EPILOG,
    )

    parser.add_argument(
        "--password", "-p", help="Wallet password (or WALLET_PASSWORD env)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- feed ---
    feed_p = subparsers.add_parser("feed", help="Marketplace feed")
    feed_p.add_argument("--page", type=int, default=1, help="Page number")
    feed_p.add_argument("--page-size", type=int, help="Items per page")

    # --- mine ---
    mine_p = subparsers.add_parser("mine", help="NFTs owned by a wallet")
    mine_p.add_argument("--wallet", "-w", help="Wallet label or address")
    mine_p.add_argument("--start", type=int, default=0, help="Resume from token id")
    mine_p.add_argument("--limit", "-l", type=int, help="Stop after N results")

    # --- info ---
    info_p = subparsers.add_parser("info", help="NFT details")
    info_p.add_argument("--token", "-t", type=int, required=True, help="Token id")

    # --- list ---
    list_p = subparsers.add_parser("list", help="List NFT for sale")
    list_p.add_argument("--token", "-t", type=int, required=True, help="Token id")
    list_p.add_argument("--price", required=True, help="Price in ETH")
    list_p.add_argument("--wallet", "-w", help="Seller wallet")
    list_p.add_argument("--confirm", action="store_true", help="Confirm and send")

    # --- buy ---
    buy_p = subparsers.add_parser("buy", help="Buy listed NFT")
    buy_p.add_argument("--token", "-t", type=int, required=True, help="Token id")
    buy_p.add_argument("--wallet", "-w", help="Buyer wallet")
    buy_p.add_argument("--confirm", action="store_true", help="Confirm and send")
    buy_p.add_argument("--refresh", action="store_true", help="Return the updated feed")

    # --- cancel ---
    cancel_p = subparsers.add_parser("cancel", help="Cancel listing")
    cancel_p.add_argument("--token", "-t", type=int, required=True, help="Token id")
    cancel_p.add_argument("--wallet", "-w", help="Seller wallet")
    cancel_p.add_argument("--confirm", action="store_true", help="Confirm and send")
    cancel_p.add_argument("--refresh", action="store_true", help="Return the updated feed")

    # --- proceeds ---
    proceeds_p = subparsers.add_parser("proceeds", help="Proceeds balance")
    proceeds_p.add_argument("--wallet", "-w", help="Wallet label or address")

    # --- withdraw ---
    withdraw_p = subparsers.add_parser("withdraw", help="Withdraw proceeds")
    withdraw_p.add_argument("--wallet", "-w", help="Seller wallet")
    withdraw_p.add_argument("--confirm", action="store_true", help="Confirm and send")

    # --- mint ---
    mint_p = subparsers.add_parser("mint", help="Mint new NFT")
    mint_p.add_argument("--name", "-n", required=True, help="NFT name")
    mint_p.add_argument("--description", "-d", required=True, help="NFT description")
    image_src = mint_p.add_mutually_exclusive_group(required=True)
    image_src.add_argument("--image", "-i", help="Local image file (pinned to IPFS)")
    image_src.add_argument("--image-url", help="Already hosted image URL")
    mint_p.add_argument("--attributes", "-a", default="[]", help="Attributes JSON")
    mint_p.add_argument("--wallet", "-w", help="Minter wallet")
    mint_p.add_argument("--confirm", action="store_true", help="Confirm and send")

    # --- history ---
    history_p = subparsers.add_parser("history", help="Indexed marketplace events")
    history_p.add_argument("kind", choices=HISTORY_KINDS, help="Event kind")
    history_p.add_argument("--first", type=int, default=100, help="Page size")
    history_p.add_argument("--skip", type=int, default=0, help="Offset")
    history_p.add_argument("--wallet", "-w", help="Buyer wallet (purchases)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(verbose=args.verbose)

    password = args.password or os.environ.get("WALLET_PASSWORD")
    needs_password = args.command in ["list", "buy", "cancel", "withdraw", "mint"]
    wallet_arg = getattr(args, "wallet", None)
    if not needs_password and wallet_arg and not is_valid_address(wallet_arg):
        needs_password = True

    if needs_password and not password:
        if sys.stdin.isatty():
            password = getpass.getpass("Wallet password: ")
        else:
            print(json.dumps({"error": ERROR_MESSAGES["missing_password"]}))
            return sys.exit(1)

    try:
        if args.command == "feed":
            result = get_feed(page=args.page, page_size=args.page_size)

        elif args.command == "mine":
            result = get_my_nfts(args.wallet, password, start=args.start, limit=args.limit)

        elif args.command == "info":
            result = get_nft_info(args.token)

        elif args.command == "list":
            result = list_nft(args.token, args.price, args.wallet, password, confirm=args.confirm)

        elif args.command == "buy":
            result = buy_nft(
                args.token, args.wallet, password, confirm=args.confirm, refresh=args.refresh
            )

        elif args.command == "cancel":
            result = cancel_listing(
                args.token, args.wallet, password, confirm=args.confirm, refresh=args.refresh
            )

        elif args.command == "proceeds":
            result = get_proceeds(args.wallet, password)

        elif args.command == "withdraw":
            result = withdraw(args.wallet, password, confirm=args.confirm)

        elif args.command == "mint":
            result = mint_nft(
                args.name,
                args.description,
                args.wallet,
                password,
                image=args.image,
                image_url=args.image_url,
                attributes=args.attributes,
                confirm=args.confirm,
            )

        elif args.command == "history":
            result = get_history(
                args.kind,
                first=args.first,
                skip=args.skip,
                wallet_identifier=args.wallet,
                password=password,
            )

        else:
            result = {"error": f"Unknown command: {args.command}"}

        print(json.dumps(result, indent=2, ensure_ascii=False))

        if not result.get("success", False):
            return sys.exit(1)

    except ValueError as e:
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return sys.exit(1)
    except Exception as e:
        logger.exception("Command %s failed", args.command)
        print(json.dumps(format_error(e), indent=2, ensure_ascii=False))
        return sys.exit(1)


if __name__ == "__main__":
    main()
