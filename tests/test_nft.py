"""
Unit tests for nft.py commands (contract and indexer replaced by fakes).

Run with: pytest tests/test_nft.py -v
"""

from unittest.mock import MagicMock

import pytest

from conftest import BUYER, FakeGateway, FakeResolver, MARKETPLACE, ONE_FINNEY, SELLER
from errors import IndexerUnavailable
from reconcile import LocalDelta
import nft


def listed_token(owner=MARKETPLACE, seller=SELLER, price=ONE_FINNEY):
    return {"owner": owner, "uri": "ipfs://Qm1", "listed": True, "price": price, "seller": seller}


@pytest.fixture
def gateway(monkeypatch):
    gateway = FakeGateway(
        tokens={
            0: {"owner": SELLER, "uri": "ipfs://Qm0"},
            1: {"owner": BUYER, "uri": "ipfs://Qm1"},
            2: {"owner": SELLER, "uri": "ipfs://Qm2"},
            3: listed_token(),
        }
    )
    monkeypatch.setattr(nft, "gateway_from_config", lambda config=None: gateway)
    monkeypatch.setattr(nft, "resolver_from_config", lambda config=None: FakeResolver())
    return gateway


@pytest.fixture
def as_seller(monkeypatch, seller_session):
    monkeypatch.setattr(nft, "load_session", lambda *args, **kwargs: seller_session)
    return seller_session


@pytest.fixture
def as_buyer(monkeypatch, buyer_session):
    monkeypatch.setattr(nft, "load_session", lambda *args, **kwargs: buyer_session)
    return buyer_session


@pytest.fixture
def index(monkeypatch):
    index = MagicMock()
    monkeypatch.setattr(nft, "index_from_config", lambda config=None: index)
    return index


# =============================================================================
# Reads
# =============================================================================


class TestFeed:
    def test_listed_then_minted(self, mock_config, gateway, index, sample_listings, sample_mints):
        index.get_listed.return_value = sample_listings
        index.get_minted.return_value = sample_mints

        result = nft.get_feed(page=2, page_size=5, workers=1)

        assert result["success"]
        assert result["count"] == 2
        assert result["listed"] == 1
        assert result["malformed"] == 0
        index.get_listed.assert_called_once_with(first=5, skip=5)

    def test_indexer_down_is_empty_feed(self, mock_config, gateway, index):
        index.get_listed.side_effect = IndexerUnavailable("Connection error")

        result = nft.get_feed()

        assert result["success"]
        assert result["nfts"] == []

    def test_missing_subgraph(self, mock_config, gateway, index):
        mock_config["config_file"].write_text('{"subgraph_url": ""}')

        assert nft.get_feed()["success"] is False


class TestMine:
    def test_owned_tokens(self, mock_config, gateway):
        result = nft.get_my_nfts(SELLER)

        assert result["count"] == 2
        assert result["total_supply"] == 4
        assert "next_token_id" not in result

    def test_limit_reports_resume_point(self, mock_config, gateway):
        result = nft.get_my_nfts(SELLER, limit=1)

        assert result["count"] == 1
        assert result["next_token_id"] == 1

    def test_unknown_wallet(self, mock_config, gateway):
        result = nft.get_my_nfts("nobody")

        assert result["success"] is False


class TestInfoAndHistory:
    def test_info_listed(self, mock_config, gateway):
        result = nft.get_nft_info(3)

        assert result["is_listed"]
        assert result["seller"] == SELLER
        assert result["price_eth"] == "0.0010"
        assert result["metadata"]["name"] == "meta:ipfs://Qm1"

    def test_proceeds(self, mock_config, gateway):
        gateway.proceeds[SELLER.lower()] = 2 * ONE_FINNEY

        result = nft.get_proceeds(SELLER)

        assert result["proceeds"] == str(2 * ONE_FINNEY)
        assert result["network"] == "sepolia"

    def test_sales_history_formats_prices(self, mock_config, index):
        index.get_sold.return_value = [{"tokenId": 3, "price": ONE_FINNEY}]

        result = nft.get_history("sales")

        assert result["events"][0]["price"] == str(ONE_FINNEY)
        assert result["events"][0]["price_eth"] == "0.0010"

    def test_purchases_need_wallet(self, mock_config, index):
        assert nft.get_history("purchases")["success"] is False

    def test_purchases_by_address(self, mock_config, index):
        index.get_purchases_by_buyer.return_value = []

        nft.get_history("purchases", wallet_identifier=BUYER)

        index.get_purchases_by_buyer.assert_called_once_with(BUYER, first=100, skip=0)


# =============================================================================
# Writes
# =============================================================================


class TestWrites:
    def test_list_preview_sends_nothing(self, mock_config, gateway, as_seller):
        result = nft.list_nft(0, "0.01", "seller", "pw")

        assert result["confirmed"] is False
        assert result["needs_approval"] is True
        assert result["price"] == str(10 * ONE_FINNEY)
        assert gateway.sent == []

    def test_list_confirmed_approves_first(self, mock_config, gateway, as_seller):
        result = nft.list_nft(0, "0.01", "seller", "pw", confirm=True)

        assert result["success"]
        assert result["approval"] == "granted"
        assert [s[0] for s in gateway.sent] == ["approve", "list_nft"]

    def test_buy_preview_not_listed(self, mock_config, gateway, as_buyer):
        assert nft.buy_nft(0, "buyer", "pw")["success"] is False

    def test_buy_own_listing_rejected(self, mock_config, gateway, as_seller):
        result = nft.buy_nft(3, "seller", "pw", confirm=True)

        assert result["success"] is False
        assert result["error"] == "You cannot buy your own NFT"
        assert result["state"] == "failed"
        assert gateway.sent == []

    def test_buy_confirmed(self, mock_config, gateway, as_buyer):
        result = nft.buy_nft(3, "buyer", "pw", confirm=True)

        assert result["success"]
        assert gateway.sent == [("buy_nft", 3, ONE_FINNEY)]

    def test_cancel_confirmed(self, mock_config, gateway, as_seller):
        result = nft.cancel_listing(3, "seller", "pw", confirm=True)

        assert result["success"]
        assert gateway.sent == [("cancel_listing", 3)]

    def test_mint_preview_predicts_token(self, mock_config, gateway, as_seller):
        result = nft.mint_nft("Fox", "A fox", "seller", "pw", image_url="https://img.test/fox.png")

        assert result["predicted_token_id"] == 4
        assert result["image"] == "https://img.test/fox.png"


# =============================================================================
# Feed refresh after a confirmed flow
# =============================================================================


@pytest.fixture
def stale_index(index):
    """Indexer that has not caught up yet: token 3 still listed."""
    index.get_listed.return_value = [
        {"id": "l3", "tokenId": 3, "seller": SELLER, "price": ONE_FINNEY, "tokenURI": "ipfs://Qm1"}
    ]
    index.get_minted.return_value = [
        {"id": "m3", "tokenId": 3, "owner": SELLER, "tokenURI": "ipfs://Qm1"},
        {"id": "m7", "tokenId": 7, "owner": BUYER, "tokenURI": "ipfs://Qm7"},
    ]
    return index


class TestRefresh:
    def test_buy_refresh_hides_bought_token(self, mock_config, gateway, stale_index, as_buyer):
        result = nft.buy_nft(3, "buyer", "pw", confirm=True, refresh=True)

        assert result["success"]
        assert [n["token_id"] for n in result["feed"]] == [7]

    def test_cancel_refresh_shows_token_unlisted(
        self, mock_config, gateway, stale_index, as_seller
    ):
        result = nft.cancel_listing(3, "seller", "pw", confirm=True, refresh=True)

        feed = {n["token_id"]: n for n in result["feed"]}
        assert feed[3]["is_listed"] is False
        assert feed[3]["owner"] == SELLER
        assert "price" not in feed[3]

    def test_no_feed_without_refresh(self, mock_config, gateway, stale_index, as_buyer):
        assert "feed" not in nft.buy_nft(3, "buyer", "pw", confirm=True)
        stale_index.get_listed.assert_not_called()

    def test_failed_flow_skips_refresh(self, mock_config, gateway, stale_index, as_seller):
        result = nft.buy_nft(3, "seller", "pw", confirm=True, refresh=True)

        assert "feed" not in result
        stale_index.get_listed.assert_not_called()

    def test_feed_drops_hints_the_indexer_caught_up_with(self, mock_config, gateway, index):
        index.get_listed.return_value = []
        index.get_minted.return_value = [
            {"id": "m3", "tokenId": 3, "owner": BUYER, "tokenURI": "ipfs://Qm1"}
        ]
        delta = LocalDelta(removed={3}, unlisted={5})

        result = nft.get_feed(delta=delta)

        assert [n["token_id"] for n in result["nfts"]] == [3]
        assert not delta
