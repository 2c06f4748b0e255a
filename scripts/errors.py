#!/usr/bin/env python3
"""
NFT Market Client — Error taxonomy and user-friendly messages

Every failure that leaves the core is one of the MarketplaceError subclasses
below, each carrying a stable ``category``. Raw chain/provider messages are
classified by substring before being surfaced; unrecognized messages keep
their original text.
"""

from typing import Optional, Dict, Any


# =============================================================================
# Error Classes
# =============================================================================


class MarketplaceError(Exception):
    """Base class for all client-side marketplace failures."""

    category = "Unknown"

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.raw = raw if raw is not None else message

    def to_dict(self) -> Dict[str, Any]:
        result = {"category": self.category, "message": self.message}
        if self.raw != self.message:
            result["raw_error"] = self.raw
        return result


class WalletUnavailable(MarketplaceError):
    """No signing capability in the session."""

    category = "WalletUnavailable"


class WrongNetwork(MarketplaceError):
    """Connected chain differs from the configured one."""

    category = "WrongNetwork"

    def __init__(self, expected: int, actual: Optional[int]):
        super().__init__(
            f"Wrong network: connected to chain {actual}, expected {expected}"
        )
        self.expected = expected
        self.actual = actual


class ApprovalRequired(MarketplaceError):
    """Internal list-flow step marker: the marketplace is not yet approved."""

    category = "ApprovalRequired"


class InsufficientFunds(MarketplaceError):
    category = "InsufficientFunds"


class TransactionReverted(MarketplaceError):
    """Contract-level rejection, with the reason string when available."""

    category = "TransactionReverted"


class PreconditionFailed(TransactionReverted):
    """A client-side check that would have reverted on chain; nothing was sent."""


class TransactionTimeout(TransactionReverted):
    """Receipt not observed within the configured wait."""


class MetadataFetchFailure(MarketplaceError):
    category = "MetadataFetchFailure"


class IndexerUnavailable(MarketplaceError):
    category = "IndexerUnavailable"


class FlowInProgress(MarketplaceError):
    """Another transaction from the same orchestrator is still in flight."""

    category = "FlowInProgress"


# =============================================================================
# Error Message Mapping
# =============================================================================

INSUFFICIENT_FUNDS_MESSAGE = "Insufficient ETH balance for purchase"

ERROR_PATTERNS = {
    # Wallet errors
    "insufficient funds": {
        "message": INSUFFICIENT_FUNDS_MESSAGE,
        "category": InsufficientFunds.category,
        "reasons": [
            "Not enough ETH for the price plus gas",
            "Listing fee not covered by the balance",
        ],
        "suggestion": "Top up the wallet and try again",
    },
    "wallet not found": {
        "message": "Wallet not found",
        "category": WalletUnavailable.category,
        "reasons": [
            "Wallet label doesn't exist",
            "Wallet not imported",
        ],
        "suggestion": "List wallets with 'wallet.py list' or import one",
    },
    "invalid password": {
        "message": "Invalid password",
        "category": WalletUnavailable.category,
        "reasons": [
            "Password is incorrect",
            "Password doesn't match wallet encryption",
        ],
        "suggestion": "Check your password and try again",
    },
    "wrong network": {
        "message": "Wrong network",
        "category": WrongNetwork.category,
        "reasons": ["RPC endpoint points at a different chain"],
        "suggestion": "Check rpc_url and chain_id in config",
    },
    # Transaction errors
    "nonce too low": {
        "message": "Transaction nonce mismatch",
        "category": TransactionReverted.category,
        "reasons": [
            "Another transaction was sent first",
            "Wallet state changed",
        ],
        "suggestion": "Wait a moment and try again",
    },
    "execution reverted": {
        "message": "Transaction reverted by the contract",
        "category": TransactionReverted.category,
        "reasons": [
            "Token is not owned by this wallet",
            "Listing is no longer active",
            "Sent value does not match the price",
        ],
        "suggestion": "Refresh the listing and check ownership",
    },
    "transaction failed": {
        "message": "Transaction failed",
        "category": TransactionReverted.category,
        "reasons": [
            "Insufficient balance",
            "Invalid transaction parameters",
            "Smart contract rejected transaction",
        ],
        "suggestion": "Check transaction details and try again",
    },
    # API errors
    "timeout": {
        "message": "Request timeout",
        "category": "Timeout",
        "reasons": [
            "Network connection is slow",
            "RPC or indexer is overloaded",
        ],
        "suggestion": "Try again in a few moments",
    },
    "connection error": {
        "message": "Connection error",
        "category": "Connection",
        "reasons": [
            "No internet connection",
            "RPC or indexer endpoint is down",
        ],
        "suggestion": "Check your internet connection and try again",
    },
}


# =============================================================================
# Classification
# =============================================================================


def _extract_error_message(error: Any) -> str:
    """Extract error message from various error types."""
    if isinstance(error, str):
        return error
    elif isinstance(error, dict):
        return str(error.get("error", error))
    elif isinstance(error, MarketplaceError):
        return error.message
    elif isinstance(error, Exception):
        # web3 ContractLogicError keeps the revert reason in .message
        message = getattr(error, "message", None)
        if isinstance(message, str) and message:
            return message
        return str(error)
    else:
        return str(error)


def classify_error(error: Any) -> MarketplaceError:
    """
    Turn any raw failure into a MarketplaceError.

    Known substrings are rewritten into their stable category; anything
    unrecognized keeps its original message unmodified.
    """
    if isinstance(error, MarketplaceError):
        return error

    raw = _extract_error_message(error)
    lower = raw.lower()

    if "insufficient funds" in lower:
        return InsufficientFunds(INSUFFICIENT_FUNDS_MESSAGE, raw=raw)

    type_name = type(error).__name__
    if type_name == "TimeExhausted":
        return TransactionTimeout(raw or "Transaction was not confirmed in time", raw=raw)
    if type_name in ("ContractLogicError", "ContractCustomError") or "revert" in lower:
        return TransactionReverted(_revert_reason(raw), raw=raw)

    return MarketplaceError(raw)


def _revert_reason(raw: str) -> str:
    """Strip the provider prefix from a revert message."""
    for prefix in ("execution reverted: ", "execution reverted:"):
        if raw.startswith(prefix):
            reason = raw[len(prefix):].strip()
            return reason or raw
    return raw


# =============================================================================
# Error Formatting Functions
# =============================================================================


def format_error(
    error: Any,
    error_type: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Convert a technical error into user-friendly CLI output.

    Args:
        error: Error message (string, dict, or exception)
        error_type: Type of error (e.g., "transaction", "wallet", "indexer")
        context: Additional context (e.g., {"token_id": 3})

    Returns:
        dict with formatted error message
    """
    error_msg = _extract_error_message(error)
    error_lower = error_msg.lower()

    matched_pattern = None
    for pattern, info in ERROR_PATTERNS.items():
        if pattern in error_lower:
            matched_pattern = info
            break

    result = {
        "success": False,
        "error": error_msg,
    }

    if isinstance(error, MarketplaceError):
        result["category"] = error.category
    elif matched_pattern:
        result["category"] = matched_pattern["category"]
        result["error"] = matched_pattern["message"]

    if matched_pattern:
        result["reasons"] = matched_pattern.get("reasons", [])
        result["suggestion"] = matched_pattern.get("suggestion", "")

    if context:
        for key in ("token_id", "address", "wallet", "tx_hash"):
            if key in context:
                result[key] = context[key]

    if error_type == "transaction" and isinstance(error, MarketplaceError):
        if error.raw != error.message:
            result["raw_error"] = error.raw

    return result


def format_transaction_error(error: Any, tx_hash: Optional[str] = None) -> Dict[str, Any]:
    """Format transaction error."""
    context = {"tx_hash": tx_hash} if tx_hash else None
    return format_error(error, error_type="transaction", context=context)


# =============================================================================
# Helper Functions
# =============================================================================


def get_error_suggestion(error: Any) -> Optional[str]:
    """Get suggestion for error if available."""
    error_msg = _extract_error_message(error).lower()
    for pattern, info in ERROR_PATTERNS.items():
        if pattern in error_msg:
            return info.get("suggestion")
    return None
