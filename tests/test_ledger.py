"""Tests for the append-only transaction ledger."""

from __future__ import annotations

import pytest

from conftest import BUYER, OTHER, SELLER
from invite_markets.config import BASE_SEPOLIA_CHAIN_ID
from invite_markets.services.ledger import TransactionLedger


async def _sale(ledger, **overrides):
    fields = dict(
        listing_slug="abc12345",
        seller_address=SELLER,
        buyer_address=BUYER,
        app_id="ethos",
        price_micro_usdc=5_000_000,
        tx_hash=None,
    )
    fields.update(overrides)
    return await ledger.append(**fields)


@pytest.mark.asyncio
async def test_append_lowercases_addresses(ledger):
    txn = await _sale(ledger, seller_address=SELLER.upper().replace("0X", "0x"))

    assert txn.transaction_id is not None
    assert txn.seller_address == SELLER
    assert txn.chain_id == ledger.chain_id


@pytest.mark.asyncio
async def test_recent_for_app_matches_app_or_slug(ledger):
    await _sale(ledger, app_id="Farcaster", listing_slug="aaaa1111")
    await _sale(ledger, app_id="ethos", listing_slug="bbbb2222")

    by_app = await ledger.recent_for_app("farcaster")
    assert [txn.listing_slug for txn in by_app] == ["aaaa1111"]

    by_slug = await ledger.recent_for_app("bbbb2222")
    assert [txn.app_id for txn in by_slug] == ["ethos"]


@pytest.mark.asyncio
async def test_seller_stats(ledger):
    await _sale(ledger, price_micro_usdc=5_000_000)
    await _sale(ledger, price_micro_usdc=1_500_000)
    await _sale(ledger, seller_address=OTHER, price_micro_usdc=9_000_000)

    stats = await ledger.seller_stats(SELLER)
    assert stats.total_sales == 2
    assert stats.total_revenue_micro_usdc == 6_500_000

    empty = await ledger.seller_stats("0x" + "c" * 40)
    assert empty.total_sales == 0
    assert empty.total_revenue_micro_usdc == 0


@pytest.mark.asyncio
async def test_counts_scoped_to_chain(db_session, ledger):
    testnet = TransactionLedger(db_session, BASE_SEPOLIA_CHAIN_ID)
    await _sale(ledger)
    await _sale(testnet)
    await _sale(testnet)

    assert await ledger.count() == 1
    assert await testnet.count() == 2
    assert len(await ledger.buyer_history(BUYER)) == 1


@pytest.mark.asyncio
async def test_list_recent_pagination(ledger):
    for i in range(5):
        await _sale(ledger, listing_slug=f"slug000{i}")

    page = await ledger.list_recent(limit=2, skip=1)
    assert len(page) == 2
