"""Tests for listing persistence and the inventory compare-and-set.

Run with:
    ./venv/bin/python -m pytest tests/test_listing_store.py -v
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import CHAIN_ID, OTHER, SELLER, make_listing
from invite_markets.config import BASE_MAINNET_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID
from invite_markets.errors import ListingConflict
from invite_markets.services.listing_store import (
    SLUG_ALPHABET,
    SLUG_LENGTH,
    InventorySnapshot,
    ListingStore,
    generate_slug,
)


def test_generate_slug_shape():
    slug = generate_slug()
    assert len(slug) == SLUG_LENGTH
    assert set(slug) <= set(SLUG_ALPHABET)


# ---------------------------------------------------------------------------
# Create / lookup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_assigns_slug_and_chain(store):
    listing = await make_listing(store)

    assert len(listing.slug) == SLUG_LENGTH
    assert listing.chain_id == CHAIN_ID

    found = await store.find_by_slug(listing.slug)
    assert found is not None
    assert found.invite_url == "https://example.com/invite/secret"


@pytest.mark.asyncio
async def test_create_retries_taken_slug(store):
    first = await make_listing(store)

    slugs = iter([first.slug, "zzzz9999"])
    with patch("invite_markets.services.listing_store.generate_slug", lambda: next(slugs)):
        second = await make_listing(store)

    assert second.slug == "zzzz9999"


@pytest.mark.asyncio
async def test_create_gives_up_after_attempts(store):
    first = await make_listing(store)

    with patch("invite_markets.services.listing_store.generate_slug", lambda: first.slug):
        with pytest.raises(ListingConflict):
            await make_listing(store)


@pytest.mark.asyncio
async def test_lookup_scoped_to_chain(db_session):
    mainnet = ListingStore(db_session, BASE_MAINNET_CHAIN_ID)
    testnet = ListingStore(db_session, BASE_SEPOLIA_CHAIN_ID)
    listing = await make_listing(mainnet)

    assert await mainnet.find_by_slug(listing.slug) is not None
    assert await testnet.find_by_slug(listing.slug) is None


@pytest.mark.asyncio
async def test_find_by_seller(store):
    await make_listing(store)
    await make_listing(store, seller_address=OTHER)

    mine = await store.find_by_seller(SELLER.upper().replace("0X", "0x"))
    assert [listing.seller_address for listing in mine] == [SELLER]


# ---------------------------------------------------------------------------
# App matching
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_app_match_is_case_insensitive_equality(store):
    await make_listing(store, app_id=None, app_name="Farcaster", price_micro_usdc=3_000_000)
    await make_listing(store, app_id=None, app_name="Farcaster Pro", price_micro_usdc=1_000_000)

    matches = await store.find_by_app("FARCASTER")
    assert [listing.app_name for listing in matches] == ["Farcaster"]

    # No substring or pattern semantics
    assert await store.find_by_app("farc") == []
    assert await store.find_by_app("%") == []


@pytest.mark.asyncio
async def test_lowest_available_price_ignores_unavailable(store):
    await make_listing(store, price_micro_usdc=1_000_000, status="cancelled")
    await make_listing(store, price_micro_usdc=2_000_000, max_uses=1, purchase_count=1, status="sold")
    await make_listing(store, price_micro_usdc=4_000_000)
    await make_listing(store, price_micro_usdc=3_500_000)

    assert await store.lowest_available_price("Ethos") == 3_500_000
    assert await store.lowest_available_price("unknown") is None


# ---------------------------------------------------------------------------
# Owner mutations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_fields_requires_owner(store):
    listing = await make_listing(store)

    assert not await store.update_fields(listing.slug, OTHER, {"price_micro_usdc": 1})
    assert await store.update_fields(listing.slug, SELLER, {"price_micro_usdc": 7_000_000})

    refreshed = await store.find_by_slug(listing.slug)
    assert refreshed.price_micro_usdc == 7_000_000


@pytest.mark.asyncio
async def test_delete_only_active_owned(store):
    sold = await make_listing(store, status="sold", purchase_count=1)
    active = await make_listing(store)

    assert not await store.delete(sold.slug, SELLER)
    assert not await store.delete(active.slug, OTHER)
    assert await store.delete(active.slug, SELLER)
    assert await store.find_by_slug(active.slug) is None


# ---------------------------------------------------------------------------
# Inventory compare-and-set
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_consume_single_use_marks_sold(store):
    listing = await make_listing(store, max_uses=1)
    snapshot = InventorySnapshot.of(listing)

    assert await store.consume_inventory(listing.slug, snapshot)

    refreshed = await store.find_by_slug(listing.slug)
    assert refreshed.purchase_count == 1
    assert refreshed.status == "sold"


@pytest.mark.asyncio
async def test_consume_with_stale_snapshot_fails(store):
    listing = await make_listing(store, max_uses=5)
    snapshot = InventorySnapshot.of(listing)

    assert await store.consume_inventory(listing.slug, snapshot)
    # Second caller holding the same observation loses
    assert not await store.consume_inventory(listing.slug, snapshot)

    refreshed = await store.find_by_slug(listing.slug)
    assert refreshed.purchase_count == 1
    assert refreshed.status == "active"


@pytest.mark.asyncio
async def test_consume_unlimited_stays_active(store):
    listing = await make_listing(store, max_uses=-1)
    for expected_count in range(3):
        current = await store.find_by_slug(listing.slug)
        assert current.purchase_count == expected_count
        assert await store.consume_inventory(listing.slug, InventorySnapshot.of(current))

    refreshed = await store.find_by_slug(listing.slug)
    assert refreshed.purchase_count == 3
    assert refreshed.status == "active"


@pytest.mark.asyncio
async def test_consume_refuses_cancelled(store):
    listing = await make_listing(store, status="cancelled")
    assert not await store.consume_inventory(listing.slug, InventorySnapshot.of(listing))


@pytest.mark.asyncio
async def test_consume_fails_after_seller_changes_max_uses(store):
    listing = await make_listing(store, max_uses=2)
    snapshot = InventorySnapshot.of(listing)
    await store.update_fields(listing.slug, SELLER, {"max_uses": 1})

    assert not await store.consume_inventory(listing.slug, snapshot)


@pytest.mark.asyncio
async def test_consume_returns_secret_as_of_claim(store):
    listing = await make_listing(store, max_uses=2, invite_url="https://old.test/inv")
    snapshot = InventorySnapshot.of(listing)
    await store.update_fields(listing.slug, SELLER, {"invite_url": "https://new.test/inv"})

    claimed = await store.consume_inventory(listing.slug, snapshot)

    assert claimed is not None
    assert claimed.listing_type == "invite_link"
    assert claimed.invite_url == "https://new.test/inv"
    assert claimed.access_code is None
