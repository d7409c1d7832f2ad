"""Listing API endpoints -- browse, owner-signed mutations, app catalog."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from invite_markets.api.dependencies import (
    get_audit_logger,
    get_listing_store,
    get_notifier,
    get_verifier,
)
from invite_markets.integrations.discord import DiscordNotifier
from invite_markets.services.audit_logger import AuditLogger
from invite_markets.services.authenticity import OwnershipVerifier
from invite_markets.services.listing_store import ListingStore
from invite_markets.services.marketplace_service import (
    AppSummary,
    CreateListingRequest,
    DeleteListingRequest,
    ListingOwnerView,
    ListingPublicView,
    ListingsPage,
    LowestPriceResponse,
    UpdateListingRequest,
    browse_listings,
    create_listing,
    delete_listing,
    get_listing,
    list_apps,
    lowest_price,
    update_listing,
)

router = APIRouter(prefix="/api/v1", tags=["listings"])


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get("/listings", response_model=ListingsPage)
async def browse_listings_endpoint(
    limit: int = Query(default=50, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    app: Optional[str] = Query(default=None, max_length=100),
    available: bool = Query(default=False),
    store: ListingStore = Depends(get_listing_store),
):
    """Newest listings first; secret payloads are never included.

    ``app`` narrows to one app id or name (any case) and sorts by price.
    """
    return await browse_listings(
        store, limit=limit, skip=skip, app=app, available_only=available
    )


@router.get("/listings/lowest-price", response_model=LowestPriceResponse)
async def lowest_price_endpoint(
    app_id: Optional[str] = Query(default=None, max_length=100),
    app_name: Optional[str] = Query(default=None, max_length=100),
    app_id_camel: Optional[str] = Query(default=None, alias="appId", max_length=100),
    app_name_camel: Optional[str] = Query(default=None, alias="appName", max_length=100),
    store: ListingStore = Depends(get_listing_store),
):
    """Cheapest available price for an app.

    Accepts ``appId``/``appName`` as well as the snake_case names used elsewhere.
    """
    return await lowest_price(
        store,
        app_id=app_id or app_id_camel,
        app_name=app_name or app_name_camel,
    )


@router.get("/listings/{slug}", response_model=ListingPublicView)
async def get_listing_endpoint(
    slug: str,
    store: ListingStore = Depends(get_listing_store),
):
    return await get_listing(store, slug)


@router.get("/apps", response_model=list[AppSummary])
async def list_apps_endpoint(store: ListingStore = Depends(get_listing_store)):
    return await list_apps(store)


# ---------------------------------------------------------------------------
# Owner-signed mutations
# ---------------------------------------------------------------------------

@router.post("/listings", status_code=status.HTTP_201_CREATED, response_model=ListingOwnerView)
async def create_listing_endpoint(
    body: CreateListingRequest,
    store: ListingStore = Depends(get_listing_store),
    verifier: OwnershipVerifier = Depends(get_verifier),
    notifier: Optional[DiscordNotifier] = Depends(get_notifier),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return await create_listing(store, verifier, body, notifier=notifier, audit=audit)


@router.patch("/listings", response_model=ListingOwnerView)
async def update_listing_endpoint(
    body: UpdateListingRequest,
    store: ListingStore = Depends(get_listing_store),
    verifier: OwnershipVerifier = Depends(get_verifier),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return await update_listing(store, verifier, body, audit=audit)


@router.delete("/listings", status_code=status.HTTP_200_OK)
async def delete_listing_endpoint(
    body: DeleteListingRequest,
    store: ListingStore = Depends(get_listing_store),
    verifier: OwnershipVerifier = Depends(get_verifier),
    audit: AuditLogger = Depends(get_audit_logger),
):
    await delete_listing(store, verifier, body, audit=audit)
    return {"detail": "Listing deleted", "slug": body.slug}
