"""Sales feed, seller profile and buyer history endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from invite_markets.api.dependencies import get_ledger, get_listing_store, get_verifier
from invite_markets.services.authenticity import OwnershipVerifier
from invite_markets.services.ledger import TransactionLedger
from invite_markets.services.listing_store import ListingStore
from invite_markets.services.sales_service import (
    BuyerHistory,
    SalesPage,
    SaleView,
    app_sales,
    buyer_history,
    sales_feed,
    seller_profile,
)

router = APIRouter(prefix="/api/v1", tags=["sales"])


@router.get("/sales", response_model=SalesPage)
async def sales_feed_endpoint(
    limit: int = Query(default=50, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    ledger: TransactionLedger = Depends(get_ledger),
):
    return await sales_feed(ledger, limit=limit, skip=skip)


@router.get("/sales/{key}", response_model=list[SaleView])
async def app_sales_endpoint(
    key: str,
    ledger: TransactionLedger = Depends(get_ledger),
):
    """Recent sales for an app id/name (any case) or a single listing slug."""
    return await app_sales(ledger, key)


@router.get("/seller/{address}")
async def seller_profile_endpoint(
    address: str,
    x_auth_message: Optional[str] = Header(default=None),
    x_auth_signature: Optional[str] = Header(default=None),
    store: ListingStore = Depends(get_listing_store),
    ledger: TransactionLedger = Depends(get_ledger),
    verifier: OwnershipVerifier = Depends(get_verifier),
):
    """Seller stats and listings.

    Secret payloads are included only when ``X-Auth-Message`` (base64) and
    ``X-Auth-Signature`` prove the caller controls *address*.
    """
    profile = await seller_profile(
        store,
        ledger,
        verifier,
        address,
        auth_message=x_auth_message,
        auth_signature=x_auth_signature,
    )
    if profile.authenticated:
        return profile
    return profile.model_dump(
        mode="json", exclude={"listings": {"__all__": {"invite_url", "access_code"}}}
    )


@router.get("/buyer/{address}", response_model=BuyerHistory)
async def buyer_history_endpoint(
    address: str,
    ledger: TransactionLedger = Depends(get_ledger),
):
    return await buyer_history(ledger, address)
