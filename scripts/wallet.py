#!/usr/bin/env python3
"""
NFT Market Client — Wallet management

- Wallet creation (BIP-39 mnemonic, m/44'/60'/0'/0/0)
- Import by mnemonic or private key
- Wallet list with labels
- ETH balance over JSON-RPC
- Encrypted storage
"""

import os
import sys
import json
import argparse
import getpass
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime, UTC

# Local imports
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from utils import (  # noqa: E402
    encrypt_json,
    decrypt_json,
    ensure_skill_dir,
    load_config,
    normalize_address,
    is_valid_address,
    same_address,
    SKILL_DIR,  # noqa: F401 - used by tests via monkeypatch
    WALLETS_FILE,
)
from common import format_ether  # noqa: E402
from session import Session  # noqa: E402

from eth_account import Account  # noqa: E402
from eth_account.hdaccount.mnemonic import Mnemonic  # noqa: E402
from eth_utils import encode_hex  # noqa: E402

Account.enable_unaudited_hdwallet_features()

DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"
SECRET_FIELDS = ("mnemonic", "private_key")


# =============================================================================
# Wallet Storage
# =============================================================================


class WalletStorage:
    """Encrypted wallet storage."""

    def __init__(self, password: str):
        self.password = password
        self.wallets_file = WALLETS_FILE
        ensure_skill_dir()

    def load(self) -> Dict[str, Any]:
        """Load and decrypt the wallet store."""
        if not self.wallets_file.exists():
            return {"wallets": [], "version": 1}

        try:
            with open(self.wallets_file, "r") as f:
                encrypted = f.read().strip()
            return decrypt_json(encrypted, self.password)
        except Exception as e:
            raise ValueError(f"Failed to decrypt wallets: {e}")

    def save(self, data: Dict[str, Any]) -> bool:
        """Encrypt and persist the wallet store."""
        try:
            encrypted = encrypt_json(data, self.password)
            with open(self.wallets_file, "w") as f:
                f.write(encrypted)
            # Owner-only permissions
            os.chmod(self.wallets_file, 0o600)
            return True
        except Exception as e:
            raise ValueError(f"Failed to save wallets: {e}")

    def add_wallet(self, wallet_data: dict) -> bool:
        """Add a wallet to the store."""
        storage = self.load()

        for w in storage["wallets"]:
            if same_address(w.get("address"), wallet_data.get("address")):
                raise ValueError(f"Wallet already exists: {wallet_data['address']}")

        storage["wallets"].append(wallet_data)
        return self.save(storage)

    def get_wallets(self, include_secrets: bool = False) -> List[dict]:
        """Return all wallets."""
        storage = self.load()
        wallets = storage.get("wallets", [])

        if not include_secrets:
            return [
                {k: v for k, v in w.items() if k not in SECRET_FIELDS}
                for w in wallets
            ]
        return wallets

    def get_wallet(
        self, identifier: str, include_secrets: bool = False
    ) -> Optional[dict]:
        """
        Find a wallet by address or label.

        Args:
            identifier: Wallet address or label
            include_secrets: Whether to include private data
        """
        wallets = self.get_wallets(include_secrets=include_secrets)

        for w in wallets:
            # Label lookup (case-insensitive)
            if w.get("label", "").lower() == identifier.lower():
                return w

            # Address lookup (any case)
            if same_address(w.get("address"), identifier):
                return w

        return None

    def update_wallet(self, identifier: str, updates: dict) -> bool:
        """Update wallet fields."""
        storage = self.load()

        for i, w in enumerate(storage["wallets"]):
            if w.get("label", "").lower() == identifier.lower() or same_address(
                w.get("address"), identifier
            ):
                storage["wallets"][i].update(updates)
                return self.save(storage)

        raise ValueError(f"Wallet not found: {identifier}")

    def remove_wallet(self, identifier: str) -> bool:
        """Remove a wallet."""
        storage = self.load()

        for i, w in enumerate(storage["wallets"]):
            if w.get("label", "").lower() == identifier.lower() or same_address(
                w.get("address"), identifier
            ):
                del storage["wallets"][i]
                return self.save(storage)

        raise ValueError(f"Wallet not found: {identifier}")


# =============================================================================
# Wallet Generation
# =============================================================================


def generate_mnemonic(num_words: int = 24) -> List[str]:
    """Generate a new BIP-39 mnemonic."""
    return Mnemonic("english").generate(num_words=num_words).split()


def validate_mnemonic(mnemonic: List[str]) -> bool:
    """Check word list and checksum."""
    try:
        return Mnemonic("english").is_mnemonic_valid(" ".join(mnemonic))
    except Exception:
        return False


def mnemonic_to_wallet(
    mnemonic: List[str], derivation_path: str = DEFAULT_DERIVATION_PATH
) -> dict:
    """Derive the account for a mnemonic."""
    account = Account.from_mnemonic(" ".join(mnemonic), account_path=derivation_path)
    return {
        "address": account.address,
        "private_key": encode_hex(account.key),
        "derivation_path": derivation_path,
    }


def private_key_to_wallet(private_key: str) -> dict:
    """Wallet record for a raw private key."""
    try:
        account = Account.from_key(private_key)
    except Exception:
        raise ValueError("Invalid private key")
    return {"address": account.address, "private_key": encode_hex(account.key)}


def load_session(
    identifier: Optional[str], password: Optional[str], chain_id: Optional[int] = None
) -> Session:
    """
    Build a signing session from the wallet store.

    Missing password or wallet yields a session without a signer; write flows
    then fail with WalletUnavailable.
    """
    identifier = identifier or load_config().get("default_wallet")

    if not password or not identifier:
        address = identifier if identifier and is_valid_address(identifier) else None
        return Session(address=address, chain_id=chain_id)

    wallet = WalletStorage(password).get_wallet(identifier, include_secrets=True)
    if not wallet:
        address = identifier if is_valid_address(identifier) else None
        return Session(address=address, chain_id=chain_id)

    account = Account.from_key(wallet["private_key"])
    return Session(address=account.address, chain_id=chain_id, account=account)


# =============================================================================
# Balances
# =============================================================================


def get_account_info(address: str, gateway) -> dict:
    """ETH balance for an address through the contract gateway's provider."""
    try:
        checksum = normalize_address(address)
        balance = gateway.get_balance(checksum)
    except Exception as e:
        return {"success": False, "error": str(e), "address": address}

    return {
        "success": True,
        "address": checksum,
        "balance": balance,
        "balance_eth": format_ether(balance),
    }


# =============================================================================
# Commands
# =============================================================================


def cmd_create(args, password: str) -> dict:
    """Create a new wallet."""
    storage = WalletStorage(password)

    mnemonic = generate_mnemonic(args.words)
    wallet_data = mnemonic_to_wallet(mnemonic)

    wallet_data["mnemonic"] = mnemonic
    wallet_data["label"] = args.label or f"wallet_{len(storage.get_wallets()) + 1}"
    wallet_data["created_at"] = datetime.now(UTC).isoformat()

    storage.add_wallet(wallet_data)

    return {
        "success": True,
        "action": "created",
        "wallet": {
            "address": wallet_data["address"],
            "label": wallet_data["label"],
        },
        "mnemonic": mnemonic,  # shown only once, at creation
        "warning": "Save the mnemonic! It is shown only once.",
    }


def cmd_import(args, password: str) -> dict:
    """Import a wallet by mnemonic or private key."""
    storage = WalletStorage(password)

    if args.private_key:
        try:
            wallet_data = private_key_to_wallet(args.private_key.strip())
        except ValueError as e:
            return {"success": False, "error": str(e)}
    else:
        mnemonic = args.mnemonic.strip().split()

        if len(mnemonic) not in (12, 15, 18, 21, 24):
            return {
                "success": False,
                "error": f"Mnemonic must be 12-24 words, got {len(mnemonic)}",
            }

        if not validate_mnemonic(mnemonic):
            return {"success": False, "error": "Invalid mnemonic"}

        wallet_data = mnemonic_to_wallet(mnemonic)
        wallet_data["mnemonic"] = mnemonic

    wallet_data["label"] = args.label or f"imported_{len(storage.get_wallets()) + 1}"
    wallet_data["created_at"] = datetime.now(UTC).isoformat()
    wallet_data["imported"] = True

    try:
        storage.add_wallet(wallet_data)
    except ValueError as e:
        return {"success": False, "error": str(e)}

    return {
        "success": True,
        "action": "imported",
        "wallet": {
            "address": wallet_data["address"],
            "label": wallet_data["label"],
        },
    }


def cmd_list(args, password: str) -> dict:
    """List all wallets, optionally with balances."""
    storage = WalletStorage(password)
    wallets = storage.get_wallets(include_secrets=False)

    gateway = _gateway() if args.balances else None
    result_wallets = []

    for w in wallets:
        wallet_info = {
            "label": w.get("label", ""),
            "address": w.get("address", ""),
            "created_at": w.get("created_at"),
        }

        if gateway is not None:
            balance = get_account_info(w["address"], gateway)
            if balance["success"]:
                wallet_info["balance_eth"] = balance["balance_eth"]
            else:
                wallet_info["balance_eth"] = None
                wallet_info["balance_error"] = balance.get("error")

        result_wallets.append(wallet_info)

    return {"success": True, "count": len(result_wallets), "wallets": result_wallets}


def cmd_balance(args, password: str) -> dict:
    """ETH balance of a wallet."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet)

    if not wallet:
        # Maybe a plain address outside the store
        if is_valid_address(args.wallet):
            address = args.wallet
        else:
            return {"success": False, "error": f"Wallet not found: {args.wallet}"}
    else:
        address = wallet["address"]

    return get_account_info(address, _gateway())


def cmd_remove(args, password: str) -> dict:
    """Remove a wallet from the store."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    storage.remove_wallet(args.wallet)

    return {"success": True, "action": "removed", "wallet": wallet["address"]}


def cmd_label(args, password: str) -> dict:
    """Rename a wallet."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    old_label = wallet.get("label", "")
    storage.update_wallet(args.wallet, {"label": args.new_label})

    return {
        "success": True,
        "action": "renamed",
        "address": wallet["address"],
        "old_label": old_label,
        "new_label": args.new_label,
    }


def cmd_export(args, password: str) -> dict:
    """Export wallet secrets."""
    storage = WalletStorage(password)

    wallet = storage.get_wallet(args.wallet, include_secrets=True)
    if not wallet:
        return {"success": False, "error": f"Wallet not found: {args.wallet}"}

    return {
        "success": True,
        "address": wallet["address"],
        "label": wallet.get("label", ""),
        "mnemonic": wallet.get("mnemonic", []),
        "private_key": wallet.get("private_key"),
        "warning": "NEVER share these secrets with anyone!",
    }


def _gateway():
    from contract import gateway_from_config

    return gateway_from_config()


# =============================================================================
# CLI
# =============================================================================


def main():
    parser = argparse.ArgumentParser(
        description="EVM Wallet Management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s create --label "trading"
  %(prog)s import --mnemonic "word1 word2 ..." --label "imported"
  %(prog)s import --private-key 0x... --label "hot"
  %(prog)s list --balances
  %(prog)s balance trading
""",
    )

    parser.add_argument(
        "--password", "-p", help="Encryption password (or use WALLET_PASSWORD env)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- create ---
    create_p = subparsers.add_parser("create", help="Create new wallet")
    create_p.add_argument("--label", "-l", help="Wallet label/name")
    create_p.add_argument(
        "--words", "-w", type=int, default=24, choices=[12, 24], help="Mnemonic length"
    )

    # --- import ---
    import_p = subparsers.add_parser("import", help="Import wallet")
    import_src = import_p.add_mutually_exclusive_group(required=True)
    import_src.add_argument("--mnemonic", "-m", help="Mnemonic (space-separated)")
    import_src.add_argument("--private-key", "-k", help="Hex private key")
    import_p.add_argument("--label", "-l", help="Wallet label")

    # --- list ---
    list_p = subparsers.add_parser("list", help="List all wallets")
    list_p.add_argument(
        "--balances", "-b", action="store_true", help="Include balances (slower)"
    )

    # --- balance ---
    balance_p = subparsers.add_parser("balance", help="Get wallet balance")
    balance_p.add_argument("wallet", help="Wallet label or address")

    # --- remove ---
    remove_p = subparsers.add_parser("remove", help="Remove wallet from storage")
    remove_p.add_argument("wallet", help="Wallet label or address")

    # --- label ---
    label_p = subparsers.add_parser("label", help="Change wallet label")
    label_p.add_argument("wallet", help="Current wallet label or address")
    label_p.add_argument("new_label", help="New label")

    # --- export ---
    export_p = subparsers.add_parser("export", help="Export wallet secrets (DANGER!)")
    export_p.add_argument("wallet", help="Wallet label or address")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    password = args.password or os.environ.get("WALLET_PASSWORD")

    if not password:
        # Prompt interactively when attached to a terminal
        if sys.stdin.isatty():
            password = getpass.getpass("Wallet password: ")
        else:
            print(
                json.dumps(
                    {
                        "error": "Password required. Use --password or WALLET_PASSWORD env"
                    }
                )
            )
            return sys.exit(1)

    try:
        commands = {
            "create": cmd_create,
            "import": cmd_import,
            "list": cmd_list,
            "balance": cmd_balance,
            "remove": cmd_remove,
            "label": cmd_label,
            "export": cmd_export,
        }

        result = commands[args.command](args, password)
        print(json.dumps(result, indent=2, ensure_ascii=False))

    except ValueError as e:
        print(json.dumps({"error": str(e)}, indent=2))
        return sys.exit(1)
    except Exception as e:
        print(json.dumps({"error": f"Unexpected error: {e}"}, indent=2))
        return sys.exit(1)


if __name__ == "__main__":
    main()
