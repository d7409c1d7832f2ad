"""Tests for ORM model imports, table names and listing availability."""

import pytest

from invite_markets.models import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_SOLD,
    UNLIMITED_USES,
    Base,
    Listing,
    Transaction,
)

MODEL_TABLE_PAIRS = [
    (Listing, "listings"),
    (Transaction, "transactions"),
]


class TestModelImports:
    @pytest.mark.parametrize(
        "model_cls,expected_table",
        MODEL_TABLE_PAIRS,
        ids=[pair[1] for pair in MODEL_TABLE_PAIRS],
    )
    def test_model_importable_and_table_name(self, model_cls, expected_table):
        assert model_cls.__tablename__ == expected_table


class TestBaseMetadata:
    def test_metadata_has_both_tables(self):
        assert set(Base.metadata.tables) == {"listings", "transactions"}

    def test_transaction_has_no_listing_foreign_key(self):
        # Sold listings may be deleted; their sales must survive
        assert not Transaction.__table__.c.listing_slug.foreign_keys

    def test_listing_slug_unique(self):
        assert Listing.__table__.c.slug.unique


def _listing(status=STATUS_ACTIVE, max_uses=1, purchase_count=0) -> Listing:
    return Listing(
        slug="abc12345",
        status=status,
        max_uses=max_uses,
        purchase_count=purchase_count,
    )


class TestAvailability:
    def test_fresh_single_use_listing_available(self):
        listing = _listing()
        assert listing.is_available
        assert listing.unavailable_reason is None

    def test_exhausted_listing(self):
        listing = _listing(max_uses=3, purchase_count=3)
        assert not listing.is_available
        assert listing.unavailable_reason == "inventory_exhausted"

    def test_unlimited_listing_never_exhausts(self):
        listing = _listing(max_uses=UNLIMITED_USES, purchase_count=10_000)
        assert listing.is_available

    @pytest.mark.parametrize(
        "status,reason",
        [(STATUS_SOLD, "sold"), (STATUS_CANCELLED, "cancelled"), ("pending", "never_active")],
    )
    def test_non_active_statuses(self, status, reason):
        listing = _listing(status=status)
        assert not listing.is_available
        assert listing.unavailable_reason == reason
