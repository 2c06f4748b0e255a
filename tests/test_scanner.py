"""
Unit tests for scanner.py (on-chain ownership scan).

Run with: pytest tests/test_scanner.py -v
"""

import pytest

from conftest import BUYER, SELLER, FakeGateway
from scanner import OwnershipScanner


def token(owner, listed=False, price=0, uri=None):
    return {
        "owner": owner,
        "listed": listed,
        "price": price,
        "seller": owner if listed else None,
        "uri": uri or f"ipfs://token-{owner[-2:]}",
    }


@pytest.fixture
def gateway():
    return FakeGateway(
        tokens={
            0: token(SELLER, uri="ipfs://t0"),
            1: token(BUYER, uri="ipfs://t1"),
            2: token(SELLER.upper().replace("0X", "0x"), listed=True, price=500, uri="ipfs://t2"),
            3: token(BUYER, uri="ipfs://t3"),
            4: token(SELLER, uri="ipfs://t4"),
        }
    )


@pytest.fixture
def scanner(gateway, fake_resolver):
    return OwnershipScanner(gateway, fake_resolver)


class TestScan:
    def test_only_matching_owner_returned(self, scanner):
        records = scanner.scan_owned_by(SELLER)

        assert [r.token_id for r in records] == [0, 2, 4]
        assert all(r.owner.lower() == SELLER for r in records)
        assert scanner.total == 5

    def test_other_owner(self, scanner):
        assert [r.token_id for r in scanner.scan_owned_by(BUYER)] == [1, 3]

    def test_listed_token_carries_price(self, scanner):
        records = {r.token_id: r for r in scanner.scan_owned_by(SELLER)}

        assert records[2].is_listed is True
        assert records[2].price == 500
        assert records[0].is_listed is False
        assert records[0].price is None
        assert records[0].seller is None

    def test_metadata_resolved_for_owned_only(self, scanner, fake_resolver):
        scanner.scan_owned_by(BUYER)

        assert fake_resolver.resolved == ["ipfs://t1", "ipfs://t3"]

    def test_empty_supply(self, fake_resolver):
        gateway = FakeGateway()
        scanner = OwnershipScanner(gateway, fake_resolver)

        assert scanner.scan_owned_by(SELLER) == []
        assert scanner.total == 0
        assert [c[0] for c in gateway.calls] == ["get_total_nfts"]

    def test_unknown_address(self, scanner):
        assert scanner.scan_owned_by("0x" + "ee" * 20) == []

    def test_reads_are_sequential_per_token(self, gateway, scanner):
        scanner.scan_owned_by(BUYER)

        names = [c[0] for c in gateway.calls]
        assert names[:5] == ["get_total_nfts", "owner_of", "owner_of", "is_nft_listed", "token_uri"]
        # no listing read for an unlisted token
        assert "get_listing" not in names

    def test_per_token_failure_skipped(self, gateway, scanner):
        gateway.read_errors["owner_of"] = {2: Exception("execution reverted: nonexistent token")}

        records = scanner.scan_owned_by(SELLER)

        assert [r.token_id for r in records] == [0, 4]
        assert scanner.failures == 1

    def test_token_uri_failure_skipped(self, gateway, scanner):
        gateway.read_errors["token_uri"] = {0: Exception("rpc error")}

        assert [r.token_id for r in scanner.scan_owned_by(SELLER)] == [2, 4]

    def test_total_failure_raises(self, gateway, scanner):
        gateway.read_errors["get_total_nfts"] = ConnectionError("rpc down")

        with pytest.raises(ConnectionError):
            scanner.scan_owned_by(SELLER)


class TestIterator:
    def test_lazy(self, gateway, scanner):
        iterator = scanner.iter_owned_by(SELLER)
        assert gateway.calls == []

        first = next(iterator)

        assert first.token_id == 0
        assert all(c[1] == 0 for c in gateway.calls if len(c) > 1)

    def test_cancel_stops_reads(self, gateway, scanner):
        iterator = scanner.iter_owned_by(SELLER)
        next(iterator)
        reads_before = len(gateway.calls)

        scanner.cancel()

        assert list(iterator) == []
        assert len(gateway.calls) == reads_before
        assert scanner.canceled

    def test_cancel_before_first_read(self, gateway, scanner):
        iterator = scanner.iter_owned_by(SELLER)
        scanner.cancel()

        assert list(iterator) == []
        assert gateway.calls == []
        assert scanner.total is None

    def test_new_scan_clears_previous_cancel(self, gateway, scanner):
        scanner.cancel()

        records = scanner.scan_owned_by(SELLER)

        assert records
        assert not scanner.canceled

    def test_cancel_mid_token_discards_result(self, gateway, fake_resolver):
        scanner = OwnershipScanner(gateway, fake_resolver)
        original = fake_resolver.resolve

        def resolve_then_cancel(uri):
            scanner.cancel()
            return original(uri)

        fake_resolver.resolve = resolve_then_cancel

        assert scanner.scan_owned_by(SELLER) == []
        assert scanner.next_token_id == 0

    def test_resume_from_next_token_id(self, gateway, scanner):
        iterator = scanner.iter_owned_by(SELLER)
        next(iterator)
        scanner.cancel()
        list(iterator)

        assert scanner.next_token_id == 1

        resumed = list(scanner.iter_owned_by(SELLER, start=scanner.next_token_id))

        assert [r.token_id for r in resumed] == [2, 4]
        assert scanner.next_token_id == 5

    def test_start_beyond_total(self, scanner):
        assert list(scanner.iter_owned_by(SELLER, start=10)) == []
