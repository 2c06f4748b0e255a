#!/usr/bin/env python3
"""
NFT Market Client — Shared utilities

- AES-256 encryption/decryption
- Config manager
- EVM address formatting
- HTTP client with retry
- Logging setup
"""

import os
import sys
import copy
import json
import base64
import hashlib
import logging
import argparse
from pathlib import Path
from typing import Any, Optional, Union

# Dependencies
try:
    import requests
    from requests.adapters import HTTPAdapter
    from urllib3.util.retry import Retry
except ImportError:
    print(
        json.dumps(
            {"error": "Missing dependency: requests", "install": "pip install requests"}
        )
    )
    sys.exit(1)
    raise SystemExit

try:
    from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
    from cryptography.hazmat.primitives import padding
    from cryptography.hazmat.backends import default_backend
except ImportError:
    print(
        json.dumps(
            {
                "error": "Missing dependency: cryptography",
                "install": "pip install cryptography",
            }
        )
    )
    sys.exit(1)
    raise SystemExit

from eth_utils import is_address, to_checksum_address


# =============================================================================
# Constants
# =============================================================================

SKILL_DIR = Path.home() / ".nft-market"
CONFIG_FILE = SKILL_DIR / "config.json"
WALLETS_FILE = SKILL_DIR / "wallets.enc"
LOG_FILE = SKILL_DIR / "market.log"


# =============================================================================
# Encryption / Decryption (AES-256-CBC)
# =============================================================================


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a key from the password (iterated SHA256)."""
    key = password.encode("utf-8") + salt
    for _ in range(100000):  # 100k iterations
        key = hashlib.sha256(key).digest()
    return key  # 32 bytes = 256 bits


def encrypt_data(data: bytes, password: str) -> bytes:
    """
    Encrypt data with AES-256-CBC.
    Layout: salt(16) + iv(16) + encrypted_data
    """
    salt = os.urandom(16)
    iv = os.urandom(16)
    key = derive_key(password, salt)

    padder = padding.PKCS7(128).padder()
    padded_data = padder.update(data) + padder.finalize()

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    encryptor = cipher.encryptor()
    encrypted = encryptor.update(padded_data) + encryptor.finalize()

    return salt + iv + encrypted


def decrypt_data(encrypted_data: bytes, password: str) -> bytes:
    """
    Decrypt AES-256-CBC data.
    Expects layout: salt(16) + iv(16) + encrypted_data
    """
    if len(encrypted_data) < 33:
        raise ValueError("Invalid encrypted data")

    salt = encrypted_data[:16]
    iv = encrypted_data[16:32]
    ciphertext = encrypted_data[32:]

    key = derive_key(password, salt)

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    decryptor = cipher.decryptor()
    padded_data = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(128).unpadder()
    data = unpadder.update(padded_data) + unpadder.finalize()

    return data


def encrypt_json(data: dict, password: str) -> str:
    """Encrypt a JSON document and return base64."""
    json_bytes = json.dumps(data, ensure_ascii=False).encode("utf-8")
    encrypted = encrypt_data(json_bytes, password)
    return base64.b64encode(encrypted).decode("ascii")


def decrypt_json(encrypted_b64: str, password: str) -> dict:
    """Decrypt base64 back into JSON."""
    encrypted = base64.b64decode(encrypted_b64)
    decrypted = decrypt_data(encrypted, password)
    return json.loads(decrypted.decode("utf-8"))


# =============================================================================
# Config manager
# =============================================================================

DEFAULT_CONFIG = {
    "rpc_url": "https://rpc.sepolia.org",
    "chain_id": 11155111,
    "marketplace_address": "",
    "subgraph_url": "",
    "ipfs_gateway": "https://ipfs.io/ipfs/",
    "pinata_jwt": "",
    "default_wallet": "",
    "tx_timeout": 120,
    "page_size": 12,
    "metadata": {"retries": 3, "backoff_factor": 0.5, "timeout": 10},
}


def ensure_skill_dir() -> Path:
    """Create the data directory if it does not exist."""
    SKILL_DIR.mkdir(parents=True, exist_ok=True)
    return SKILL_DIR


def load_config() -> dict:
    """Load the configuration file merged over defaults."""
    ensure_skill_dir()
    if CONFIG_FILE.exists():
        try:
            with open(CONFIG_FILE, "r") as f:
                config = json.load(f)
            # Merge with defaults (for new fields)
            merged = copy.deepcopy(DEFAULT_CONFIG)
            merged.update(config)
            return merged
        except Exception:
            return copy.deepcopy(DEFAULT_CONFIG)
    return copy.deepcopy(DEFAULT_CONFIG)


def save_config(config: dict) -> bool:
    """Persist the configuration file."""
    ensure_skill_dir()
    try:
        with open(CONFIG_FILE, "w") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)
        return True
    except Exception:
        return False


def get_config_value(key: str, default: Any = None) -> Any:
    """Read a config value by key (dot notation: metadata.retries)."""
    config = load_config()
    keys = key.split(".")
    value = config
    for k in keys:
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default
    return value


def set_config_value(key: str, value: Any) -> bool:
    """Set a config value (dot notation supported)."""
    config = load_config()
    keys = key.split(".")
    target = config
    for k in keys[:-1]:
        if k not in target:
            target[k] = {}
        target = target[k]
    target[keys[-1]] = value
    return save_config(config)


def get_pinata_jwt() -> Optional[str]:
    """Pinata JWT from config or environment."""
    config = load_config()
    return os.environ.get("PINATA_JWT") or config.get("pinata_jwt")


# =============================================================================
# EVM address formatting
# =============================================================================


def is_valid_address(address: str) -> bool:
    """Check a 0x-prefixed 20-byte hex address (any case)."""
    if not isinstance(address, str):
        return False
    try:
        return is_address(address)
    except Exception:
        return False


def normalize_address(address: str, to_format: str = "checksum") -> str:
    """
    Normalize an address to the requested form.

    Args:
        address: Any valid EVM address
        to_format: "checksum" or "lower"

    Returns:
        Address in the requested form
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address}")
    if to_format == "lower":
        return address.lower()
    return to_checksum_address(address)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address comparison; empty values never match."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


# =============================================================================
# HTTP client with retry
# =============================================================================


def create_http_session(
    retries: int = 3,
    backoff_factor: float = 0.5,
    status_forcelist: tuple = (429, 500, 502, 503, 504),
    timeout: int = 30,
) -> requests.Session:
    """
    Create an HTTP session with automatic retries.

    Args:
        retries: Number of retry attempts
        backoff_factor: Exponential backoff factor between attempts
        status_forcelist: HTTP codes that trigger a retry
        timeout: Default timeout

    Returns:
        Configured requests.Session
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=["HEAD", "GET", "POST", "PUT", "DELETE", "OPTIONS", "TRACE"],
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    # Default timeout via hook
    session.request = lambda method, url, **kwargs: requests.Session.request(  # ty: ignore[invalid-assignment]
        session, method, url, timeout=kwargs.pop("timeout", timeout), **kwargs
    )

    return session


def api_request(
    url: str,
    method: str = "GET",
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    json_data: Optional[Union[dict, list]] = None,
    api_key: Optional[str] = None,
    api_key_header: str = "Authorization",
    api_key_prefix: str = "Bearer ",
    timeout: int = 30,
    retries: int = 3,
    session: Optional[requests.Session] = None,
) -> dict:
    """
    Generic API request with retry and error handling.

    Args:
        url: Request URL
        method: HTTP method
        headers: Extra headers
        params: Query parameters
        json_data: JSON body
        api_key: API key (if any)
        api_key_header: Header carrying the API key
        api_key_prefix: Prefix for the API key
        timeout: Timeout
        retries: Retry count
        session: Reuse an existing session instead of creating one

    Returns:
        dict with keys: success, data/error, status_code
    """
    if session is None:
        session = create_http_session(retries=retries, timeout=timeout)

    req_headers = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)
    if api_key:
        req_headers[api_key_header] = f"{api_key_prefix}{api_key}"

    try:
        response = session.request(
            method=method.upper(),
            url=url,
            headers=req_headers,
            params=params,
            json=json_data,
            timeout=timeout,
        )

        try:
            data = response.json()
        except Exception:
            data = response.text

        if response.ok:
            return {"success": True, "data": data, "status_code": response.status_code}
        else:
            return {
                "success": False,
                "error": data if data else response.reason,
                "status_code": response.status_code,
            }

    except requests.exceptions.Timeout:
        return {"success": False, "error": "Request timeout", "status_code": None}
    except requests.exceptions.ConnectionError:
        return {"success": False, "error": "Connection error", "status_code": None}
    except Exception as e:
        return {"success": False, "error": str(e), "status_code": None}


# =============================================================================
# Logging
# =============================================================================


def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """Configure logging to a file and stderr for the CLI entry points."""
    ensure_skill_dir()

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    fh = logging.FileHandler(log_file or LOG_FILE, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    # stdout carries the JSON result, so log lines go to stderr
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(logging.DEBUG if verbose else logging.WARNING)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    return logger


# =============================================================================
# CLI
# =============================================================================


def main():
    parser = argparse.ArgumentParser(description="NFT Market Utilities")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- config ---
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_sub = config_parser.add_subparsers(dest="config_cmd")

    config_get = config_sub.add_parser("get", help="Get config value")
    config_get.add_argument("key", help="Config key (dot notation)")

    config_set = config_sub.add_parser("set", help="Set config value")
    config_set.add_argument("key", help="Config key")
    config_set.add_argument("value", help="Value to set")

    config_sub.add_parser("show", help="Show all config")

    # --- address ---
    addr_parser = subparsers.add_parser("address", help="Address formatting")
    addr_sub = addr_parser.add_subparsers(dest="addr_cmd")

    addr_checksum = addr_sub.add_parser("checksum", help="Convert to checksum form")
    addr_checksum.add_argument("address", help="Address")

    addr_validate = addr_sub.add_parser("validate", help="Validate address")
    addr_validate.add_argument("address", help="Address to validate")

    # --- encrypt ---
    enc_parser = subparsers.add_parser("encrypt", help="Encrypt data")
    enc_parser.add_argument("--data", "-d", required=True, help="Data to encrypt")
    enc_parser.add_argument("--password", "-p", required=True, help="Password")

    dec_parser = subparsers.add_parser("decrypt", help="Decrypt data")
    dec_parser.add_argument(
        "--data", "-d", required=True, help="Encrypted data (base64)"
    )
    dec_parser.add_argument("--password", "-p", required=True, help="Password")

    args = parser.parse_args()

    result = {}

    if args.command == "config":
        if args.config_cmd == "get":
            value = get_config_value(args.key)
            result = {"key": args.key, "value": value}
        elif args.config_cmd == "set":
            # Try to parse value as JSON
            try:
                value = json.loads(args.value)
            except Exception:
                value = args.value
            success = set_config_value(args.key, value)
            result = {"success": success, "key": args.key, "value": value}
        elif args.config_cmd == "show":
            result = load_config()
            if result.get("pinata_jwt"):
                result["pinata_jwt"] = "***"
        else:
            result = {"error": "Unknown config command"}

    elif args.command == "address":
        if args.addr_cmd == "checksum":
            try:
                result = {
                    "address": args.address,
                    "checksum": normalize_address(args.address),
                }
            except ValueError as e:
                result = {"error": str(e)}
        elif args.addr_cmd == "validate":
            valid = is_valid_address(args.address)
            result = {"address": args.address, "valid": valid}
        else:
            result = {"error": "Unknown address command"}

    elif args.command == "encrypt":
        encrypted = encrypt_json({"data": args.data}, args.password)
        result = {"encrypted": encrypted}

    elif args.command == "decrypt":
        try:
            decrypted = decrypt_json(args.data, args.password)
            result = decrypted
        except Exception as e:
            result = {"error": f"Decryption failed: {e}"}

    else:
        parser.print_help()
        return

    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
