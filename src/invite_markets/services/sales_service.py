"""Read-side aggregates over the ledger: sales feed, seller and buyer pages."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from invite_markets.catalog import display_name
from invite_markets.chains import CHAINS
from invite_markets.errors import InvalidRequest
from invite_markets.models import Transaction
from invite_markets.money import format_usdc
from invite_markets.services.authenticity import OwnershipVerifier, normalize_address
from invite_markets.services.ledger import TransactionLedger
from invite_markets.services.listing_store import ListingStore
from invite_markets.services.marketplace_service import ListingOwnerView, to_owner_view


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SaleView(BaseModel):
    transaction_id: str
    listing_slug: str
    seller_address: str
    buyer_address: str
    app_id: Optional[str] = None
    app_display_name: str
    price_usdc: str
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    created_at: datetime


class SalesPage(BaseModel):
    sales: list[SaleView]
    total: int
    limit: int
    skip: int
    has_more: bool


class SellerProfile(BaseModel):
    address: str
    total_sales: int
    total_revenue_usdc: str
    authenticated: bool
    listings: list[ListingOwnerView]


class BuyerHistory(BaseModel):
    address: str
    purchases: list[SaleView]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_sale_view(txn: Transaction) -> SaleView:
    chain = CHAINS.get(txn.chain_id)
    return SaleView(
        transaction_id=str(txn.transaction_id),
        listing_slug=txn.listing_slug,
        seller_address=txn.seller_address,
        buyer_address=txn.buyer_address,
        app_id=txn.app_id,
        app_display_name=display_name(txn.app_id, None),
        price_usdc=format_usdc(txn.price_micro_usdc),
        tx_hash=txn.tx_hash,
        explorer_url=chain.explorer_tx_url(txn.tx_hash) if chain and txn.tx_hash else None,
        created_at=txn.created_at,
    )


def decode_auth_message(encoded: str) -> str:
    """Read-auth messages travel base64-encoded since they span lines."""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidRequest("X-Auth-Message must be base64-encoded UTF-8") from exc


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def sales_feed(ledger: TransactionLedger, limit: int = 50, skip: int = 0) -> SalesPage:
    sales = await ledger.list_recent(limit=limit, skip=skip)
    total = await ledger.count()
    return SalesPage(
        sales=[to_sale_view(txn) for txn in sales],
        total=total,
        limit=limit,
        skip=skip,
        has_more=skip + len(sales) < total,
    )


async def app_sales(ledger: TransactionLedger, key: str) -> list[SaleView]:
    return [to_sale_view(txn) for txn in await ledger.recent_for_app(key)]


async def seller_profile(
    store: ListingStore,
    ledger: TransactionLedger,
    verifier: OwnershipVerifier,
    address: str,
    auth_message: Optional[str] = None,
    auth_signature: Optional[str] = None,
) -> SellerProfile:
    """Seller stats and listings; secrets only for a signed-in seller.

    When read-auth headers are supplied they must verify, otherwise the
    request fails rather than silently returning the redacted view.
    """
    address = normalize_address(address)

    authenticated = False
    if auth_message or auth_signature:
        if not (auth_message and auth_signature):
            raise InvalidRequest("Both X-Auth-Message and X-Auth-Signature are required")
        await verifier.verify_read_auth(address, decode_auth_message(auth_message), auth_signature)
        authenticated = True

    stats = await ledger.seller_stats(address)
    listings = await store.find_by_seller(address)
    return SellerProfile(
        address=address,
        total_sales=stats.total_sales,
        total_revenue_usdc=format_usdc(stats.total_revenue_micro_usdc),
        authenticated=authenticated,
        listings=[to_owner_view(listing, include_secrets=authenticated) for listing in listings],
    )


async def buyer_history(ledger: TransactionLedger, address: str) -> BuyerHistory:
    address = normalize_address(address)
    purchases = await ledger.buyer_history(address)
    return BuyerHistory(address=address, purchases=[to_sale_view(txn) for txn in purchases])
