#!/usr/bin/env python3
"""
NFT Market Client — Shared Constants and Utilities

Centralized configuration for:
- Network identifiers
- Metadata defaults and gateway URLs
- Indexer entity names
- Common error messages
- Formatting utilities
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

# =============================================================================
# Networks
# =============================================================================

SEPOLIA_CHAIN_ID = 11155111

NETWORK_NAMES = {
    1: "mainnet",
    SEPOLIA_CHAIN_ID: "sepolia",
    31337: "localhost",
}

WEI_PER_ETHER = 10**18


# =============================================================================
# Metadata
# =============================================================================

PLACEHOLDER_IMAGE = "/placeholder-nft.png"
DEFAULT_DESCRIPTION = "No description available"
UNKNOWN_TOKEN_LABEL = "Unknown"

INLINE_JSON_PREFIX = "data:application/json;base64,"
IPFS_SCHEME = "ipfs://"
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"


# =============================================================================
# API URLs
# =============================================================================

PINATA_PIN_FILE_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"


# =============================================================================
# Error Messages
# =============================================================================

ERROR_MESSAGES = {
    "missing_password": "Password required. Use --password or WALLET_PASSWORD env",
    "wallet_not_found": "Wallet not found: {}",
    "invalid_address": "Invalid address format: {}",
    "missing_marketplace": "Marketplace address not configured. Run: utils.py config set marketplace_address <address>",
    "missing_subgraph": "Subgraph URL not configured. Run: utils.py config set subgraph_url <url>",
    "missing_pinata": "Pinata JWT not configured. Set pinata_jwt in config or PINATA_JWT env",
}


# =============================================================================
# Formatting Utilities
# =============================================================================


def format_ether(wei: Optional[int], decimals: int = 4) -> str:
    """Convert wei to an ether string with fixed precision."""
    if wei is None:
        return "N/A"
    ether = Decimal(int(wei)) / Decimal(WEI_PER_ETHER)
    return f"{ether:.{decimals}f}"


def parse_ether(value: Union[str, float, int, Decimal]) -> int:
    """
    Convert a human ether amount ("0.01") into integer wei.

    Raises:
        ValueError: value is not a non-negative number
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid ether amount: {value}")
    if amount.is_nan() or amount < 0:
        raise ValueError(f"Invalid ether amount: {value}")
    return int(amount * WEI_PER_ETHER)


def network_name(chain_id: Optional[int]) -> str:
    """Human network name for a chain id."""
    if chain_id is None:
        return "unknown"
    return NETWORK_NAMES.get(int(chain_id), f"chain-{chain_id}")


# =============================================================================
# CLI Help Text
# =============================================================================

COMMON_EPILOG = """
Environment variables:
  WALLET_PASSWORD      Password for encrypted wallet storage
  NFT_MARKET_RPC_URL   JSON-RPC endpoint (overrides config rpc_url)
  PINATA_JWT           Pinata JWT for image uploads when minting

Configuration:
  Config file: ~/.nft-market/config.json
  Set values: python utils.py config set <key> <value>

Prices are entered in ether and handled internally as integer wei.
"""


# =============================================================================
# Module exports
# =============================================================================

__all__ = [
    # Networks
    "SEPOLIA_CHAIN_ID",
    "NETWORK_NAMES",
    "WEI_PER_ETHER",
    # Metadata
    "PLACEHOLDER_IMAGE",
    "DEFAULT_DESCRIPTION",
    "UNKNOWN_TOKEN_LABEL",
    "INLINE_JSON_PREFIX",
    "IPFS_SCHEME",
    "DEFAULT_IPFS_GATEWAY",
    # APIs
    "PINATA_PIN_FILE_URL",
    # Errors
    "ERROR_MESSAGES",
    # Formatting
    "format_ether",
    "parse_ether",
    "network_name",
    # Help
    "COMMON_EPILOG",
]
