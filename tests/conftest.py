"""
Pytest configuration and shared fixtures for nft-market-client tests.
"""

import json
import sys
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))


# =============================================================================
# Test Data
# =============================================================================

# BIP-39 test vector (12 words) - FOR TESTING ONLY, DO NOT USE IN PRODUCTION
VALID_MNEMONIC_12 = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
# m/44'/60'/0'/0/0 of the mnemonic above
MNEMONIC_12_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"

INVALID_MNEMONIC = (
    "apple banana cherry dog elephant frog "
    "grape house igloo jungle kite lemon"
)

# Hardhat default account #0 - FOR TESTING ONLY
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_PRIVATE_KEY_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

SELLER = "0x" + "aa" * 20
BUYER = "0x" + "bb" * 20
MARKETPLACE = "0x" + "cc" * 20
ZERO = "0x" + "00" * 20

INVALID_ADDRESS = "not-a-valid-address"

CHAIN_ID = 11155111
ONE_FINNEY = 10**15


# =============================================================================
# Fakes
# =============================================================================


class FakeTx:
    """Transaction handle whose wait() succeeds or raises a preset error."""

    def __init__(self, tx_hash, error=None):
        self.tx_hash = tx_hash
        self.error = error

    def wait(self, timeout=None):
        if self.error is not None:
            raise self.error
        return {"status": 1, "transactionHash": self.tx_hash}


class FakeGateway:
    """
    In-memory marketplace contract.

    tokens: {token_id: {"owner", "uri", "listed", "price", "seller", "approved"}}
    Reads are recorded in .calls, writes in .sent. Set .read_errors[name] or
    .send_errors[name] / .wait_errors[name] to inject failures.
    """

    marketplace_address = MARKETPLACE

    def __init__(self, tokens=None, listing_fee=ONE_FINNEY // 4, proceeds=None):
        self.tokens = tokens or {}
        self.listing_fee = listing_fee
        self.proceeds = proceeds or {}
        self.calls = []
        self.sent = []
        self.read_errors = {}
        self.send_errors = {}
        self.wait_errors = {}

    def _read(self, name, *args):
        self.calls.append((name,) + args)
        error = self.read_errors.get(name)
        if isinstance(error, dict):
            error = error.get(args[0] if args else None)
        if error is not None:
            raise error

    def _token(self, token_id):
        if token_id not in self.tokens:
            raise Exception("execution reverted: ERC721NonexistentToken")
        return self.tokens[token_id]

    def _send(self, name, *args):
        self.sent.append((name,) + args)
        if name in self.send_errors:
            raise self.send_errors[name]
        return FakeTx(f"0x{len(self.sent):064x}", self.wait_errors.get(name))

    # --- reads ---

    def get_chain_id(self):
        self._read("get_chain_id")
        return CHAIN_ID

    def get_total_nfts(self):
        self._read("get_total_nfts")
        return len(self.tokens)

    def owner_of(self, token_id):
        self._read("owner_of", token_id)
        return self._token(token_id)["owner"]

    def token_uri(self, token_id):
        self._read("token_uri", token_id)
        return self._token(token_id).get("uri", "")

    def is_nft_listed(self, token_id):
        self._read("is_nft_listed", token_id)
        return bool(self._token(token_id).get("listed"))

    def get_listing(self, token_id):
        self._read("get_listing", token_id)
        token = self._token(token_id)
        return token.get("price", 0), token.get("seller", ZERO)

    def get_approved(self, token_id):
        self._read("get_approved", token_id)
        return self._token(token_id).get("approved", ZERO)

    def get_listing_fee(self):
        self._read("get_listing_fee")
        return self.listing_fee

    def get_proceeds(self, address):
        self._read("get_proceeds", address)
        return self.proceeds.get(address.lower(), 0)

    # --- writes ---

    def approve(self, session, operator, token_id):
        return self._send("approve", operator, token_id)

    def list_nft(self, session, token_id, price, fee):
        return self._send("list_nft", token_id, price, fee)

    def buy_nft(self, session, token_id, price):
        return self._send("buy_nft", token_id, price)

    def cancel_listing(self, session, token_id):
        return self._send("cancel_listing", token_id)

    def withdraw_proceeds(self, session):
        return self._send("withdraw_proceeds")

    def mint_nft(self, session, name, description, image, attributes):
        return self._send("mint_nft", name, description, image, attributes)


class FakeResolver:
    """Metadata resolver that records URIs and never touches the network."""

    def __init__(self):
        self.resolved = []

    def resolve(self, token_uri):
        from metadata import Metadata

        self.resolved.append(token_uri)
        return Metadata(name=f"meta:{token_uri}", description="d", image="i")


def make_response(payload=None, status=200):
    response = MagicMock()
    response.ok = 200 <= status < 400
    response.status_code = status
    response.reason = "OK" if response.ok else "Error"
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


# =============================================================================
# Fixtures - Fakes
# =============================================================================


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def seller_session():
    from session import Session

    return Session(address=SELLER, chain_id=CHAIN_ID, account=object())


@pytest.fixture
def buyer_session():
    from session import Session

    return Session(address=BUYER, chain_id=CHAIN_ID, account=object())


# =============================================================================
# Fixtures - Temporary Directories
# =============================================================================


@pytest.fixture
def temp_wallet_dir():
    """Create a temporary directory for wallet storage."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Fixtures - Mock HTTP
# =============================================================================


@pytest.fixture
def mock_http():
    """Mock every requests.Session request with a 200 JSON response."""
    with patch("requests.Session.request") as mock_request:
        mock_request.return_value = make_response({})
        yield mock_request


@pytest.fixture
def mock_http_timeout():
    import requests

    with patch("requests.Session.request") as mock_request:
        mock_request.side_effect = requests.exceptions.Timeout("Connection timed out")
        yield mock_request


# =============================================================================
# Fixtures - Sample Data
# =============================================================================


@pytest.fixture
def sample_listings():
    return [
        {
            "id": "0xlist3",
            "tokenId": 3,
            "seller": "0xAA",
            "price": 1000000000000000,
            "tokenURI": "ipfs://Qm123",
        }
    ]


@pytest.fixture
def sample_mints():
    return [
        {"id": "0xmint3", "tokenId": 3, "owner": "0xAA", "tokenURI": "ipfs://Qm123"},
        {
            "id": "0xmint7",
            "tokenId": 7,
            "owner": "0xBB",
            "tokenURI": "data:application/json;base64,eyJuYW1lIjoiRm94In0=",
        },
    ]


# =============================================================================
# Fixtures - Mock Config
# =============================================================================


@pytest.fixture
def mock_config(tmp_path, monkeypatch):
    """Point config and wallet storage at a temporary directory."""
    temp_skill_dir = tmp_path / "nft-market"
    temp_config_file = temp_skill_dir / "config.json"
    temp_wallets_file = temp_skill_dir / "wallets.enc"

    temp_skill_dir.mkdir(parents=True, exist_ok=True)

    default_config = {
        "rpc_url": "http://127.0.0.1:8545",
        "chain_id": CHAIN_ID,
        "marketplace_address": MARKETPLACE,
        "subgraph_url": "https://subgraph.test/query",
        "default_wallet": "",
    }
    temp_config_file.write_text(json.dumps(default_config))

    import utils

    monkeypatch.setattr(utils, "SKILL_DIR", temp_skill_dir)
    monkeypatch.setattr(utils, "CONFIG_FILE", temp_config_file)
    monkeypatch.setattr(utils, "WALLETS_FILE", temp_wallets_file)
    monkeypatch.setattr("wallet.WALLETS_FILE", temp_wallets_file)
    monkeypatch.delenv("NFT_MARKET_RPC_URL", raising=False)
    monkeypatch.delenv("PINATA_JWT", raising=False)

    return {
        "skill_dir": temp_skill_dir,
        "config_file": temp_config_file,
        "wallets_file": temp_wallets_file,
        "config": default_config,
    }


# =============================================================================
# Security Test Helpers
# =============================================================================


@pytest.fixture
def capture_logs(caplog):
    """Fixture to capture and check logs for sensitive data."""
    import logging

    caplog.set_level(logging.DEBUG)
    return caplog


def assert_no_secrets_in_string(text: str, mnemonic: str = None, private_key: str = None):
    """Assert that sensitive data is not present in a string."""
    if mnemonic:
        assert mnemonic.lower() not in text.lower(), "Mnemonic found in text!"
        words = mnemonic.lower().split()
        for i in range(len(words) - 2):
            phrase = " ".join(words[i : i + 3])
            assert phrase not in text.lower(), f"Mnemonic words found: {phrase}"

    if private_key:
        assert private_key not in text, "Private key found in text!"


# =============================================================================
# Test Categories (markers)
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: Security-related tests (critical)")
    config.addinivalue_line("markers", "slow: Slow tests (skip with -m 'not slow')")
    config.addinivalue_line("markers", "integration: Integration tests requiring network")
    config.addinivalue_line("markers", "wallet: Wallet module tests")
    config.addinivalue_line("markers", "utils: Utils module tests")
    config.addinivalue_line("markers", "metadata: Metadata resolver tests")
    config.addinivalue_line("markers", "reconcile: Listing reconciliation tests")
    config.addinivalue_line("markers", "scanner: Ownership scanner tests")
    config.addinivalue_line("markers", "orchestrator: Transaction flow tests")
    config.addinivalue_line("markers", "indexer: Event index tests")
    config.addinivalue_line("markers", "ipfs: IPFS upload tests")
    config.addinivalue_line("markers", "cli: Marketplace command tests")


# =============================================================================
# Pytest Hooks
# =============================================================================

_FILE_MARKERS = {
    "test_wallet": "wallet",
    "test_utils": "utils",
    "test_metadata": "metadata",
    "test_reconcile": "reconcile",
    "test_scanner": "scanner",
    "test_orchestrator": "orchestrator",
    "test_indexer": "indexer",
    "test_ipfs": "ipfs",
    "test_nft": "cli",
}


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        for stem, marker in _FILE_MARKERS.items():
            if stem in str(item.fspath):
                item.add_marker(getattr(pytest.mark, marker))
                break

        if "security" in item.name.lower():
            item.add_marker(pytest.mark.security)
