"""Listing CRUD with owner signature checks, public views and app aggregates."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from invite_markets.catalog import FEATURED_APPS, display_name, get_featured_app
from invite_markets.errors import InvalidRequest, ListingNotFound
from invite_markets.integrations.discord import DiscordNotifier, ListingNotification
from invite_markets.models import (
    LISTING_TYPE_ACCESS_CODE,
    LISTING_TYPE_INVITE_LINK,
    STATUS_ACTIVE,
    UNLIMITED_USES,
    Listing,
)
from invite_markets.money import format_usdc, usdc_to_micro
from invite_markets.services.audit_logger import AuditLogger
from invite_markets.services.authenticity import OwnershipVerifier, normalize_address
from invite_markets.services.listing_store import ListingStore


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SignedRequest(BaseModel):
    seller_address: str
    nonce: int
    chain_id: int
    signature: str = Field(..., min_length=2)


class CreateListingRequest(SignedRequest):
    listing_type: Literal["invite_link", "access_code"] = "invite_link"
    invite_url: Optional[str] = Field(None, max_length=2000)
    app_url: Optional[str] = Field(None, max_length=2000)
    access_code: Optional[str] = Field(None, max_length=500)
    price_usdc: Decimal = Field(..., gt=0)
    app_id: Optional[str] = Field(None, max_length=100)
    app_name: Optional[str] = Field(None, max_length=100)
    max_uses: int = 1
    description: Optional[str] = Field(None, max_length=1000)


class UpdateListingRequest(SignedRequest):
    slug: str = Field(..., min_length=1, max_length=32)
    price_usdc: Optional[Decimal] = Field(None, gt=0)
    invite_url: Optional[str] = Field(None, max_length=2000)
    app_url: Optional[str] = Field(None, max_length=2000)
    access_code: Optional[str] = Field(None, max_length=500)
    app_id: Optional[str] = Field(None, max_length=100)
    app_name: Optional[str] = Field(None, max_length=100)


class DeleteListingRequest(SignedRequest):
    slug: str = Field(..., min_length=1, max_length=32)


class ListingPublicView(BaseModel):
    slug: str
    listing_type: str
    price_usdc: str
    seller_address: str
    status: str
    available: bool
    app_id: Optional[str] = None
    app_name: Optional[str] = None
    app_display_name: str
    app_url: Optional[str] = None
    max_uses: int
    purchase_count: int
    description: Optional[str] = None
    chain_id: int
    created_at: datetime
    updated_at: datetime


class ListingOwnerView(ListingPublicView):
    invite_url: Optional[str] = None
    access_code: Optional[str] = None


class ListingsPage(BaseModel):
    listings: list[ListingPublicView]
    limit: int
    skip: int


class LowestPriceResponse(BaseModel):
    app_key: str
    lowest_price_usdc: Optional[str] = None


class AppSummary(BaseModel):
    app_id: Optional[str] = None
    app_name: str
    featured: bool
    icon_path: Optional[str] = None
    total_listings: int = 0
    active_listings: int = 0
    lowest_price_usdc: Optional[str] = None


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def to_public_view(listing: Listing) -> ListingPublicView:
    return ListingPublicView(
        slug=listing.slug,
        listing_type=listing.listing_type,
        price_usdc=format_usdc(listing.price_micro_usdc),
        seller_address=listing.seller_address,
        status=listing.status,
        available=listing.is_available,
        app_id=listing.app_id,
        app_name=listing.app_name,
        app_display_name=display_name(listing.app_id, listing.app_name),
        # The app URL of an access-code listing is public; the code is not
        app_url=listing.app_url if listing.listing_type == LISTING_TYPE_ACCESS_CODE else None,
        max_uses=listing.max_uses,
        purchase_count=listing.purchase_count,
        description=listing.description,
        chain_id=listing.chain_id,
        created_at=listing.created_at,
        updated_at=listing.updated_at,
    )


def to_owner_view(listing: Listing, include_secrets: bool = True) -> ListingOwnerView:
    """Owner-facing view; secrets only when the owner is authenticated."""
    public = to_public_view(listing)
    if not include_secrets:
        return ListingOwnerView(**public.model_dump())
    return ListingOwnerView(
        **public.model_dump(),
        invite_url=listing.invite_url,
        access_code=listing.access_code,
    )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_chain(store: ListingStore, chain_id: int) -> None:
    if chain_id != store.chain_id:
        raise InvalidRequest(
            f"Invalid chain. Expected chainId {store.chain_id}, got {chain_id}. "
            "Please switch to the correct network."
        )


def _price_to_micro(price: Decimal) -> int:
    try:
        micro = usdc_to_micro(price)
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from exc
    if micro <= 0:
        raise InvalidRequest("Price must be a positive number")
    return micro


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def create_listing(
    store: ListingStore,
    verifier: OwnershipVerifier,
    body: CreateListingRequest,
    notifier: Optional[DiscordNotifier] = None,
    audit: Optional[AuditLogger] = None,
) -> ListingOwnerView:
    """Validate, verify the seller's CreateListing signature, then insert."""
    _require_chain(store, body.chain_id)

    invite_url = _clean(body.invite_url)
    app_url = _clean(body.app_url)
    access_code = _clean(body.access_code)
    if body.listing_type == LISTING_TYPE_INVITE_LINK:
        if not invite_url:
            raise InvalidRequest("Invite URL is required for invite link listings")
        app_url = access_code = None
    else:
        if not app_url:
            raise InvalidRequest("App URL is required for access code listings")
        if not access_code:
            raise InvalidRequest("Access code is required for access code listings")
        invite_url = None

    app_id = _clean(body.app_id)
    app_name = _clean(body.app_name)
    if not app_id and not app_name:
        raise InvalidRequest("Either app_id or app_name must be provided")

    if body.max_uses != UNLIMITED_USES and body.max_uses < 1:
        raise InvalidRequest("max_uses must be -1 (unlimited) or a positive number")

    seller = normalize_address(body.seller_address)
    price_micro = _price_to_micro(body.price_usdc)

    await verifier.require_owner(
        seller,
        "CreateListing",
        {
            "listingType": body.listing_type,
            "inviteUrl": invite_url or "",
            "appUrl": app_url or "",
            "accessCode": access_code or "",
            "priceUsdc": format_usdc(price_micro),
            "sellerAddress": seller,
            "appId": app_id or "",
            "appName": app_name or "",
            "maxUses": str(body.max_uses),
        },
        body.nonce,
        body.signature,
        body.chain_id,
    )

    listing = await store.create(
        listing_type=body.listing_type,
        invite_url=invite_url,
        app_url=app_url,
        access_code=access_code,
        price_micro_usdc=price_micro,
        seller_address=seller,
        app_id=app_id,
        app_name=app_name,
        max_uses=body.max_uses,
        purchase_count=0,
        status=STATUS_ACTIVE,
        description=_clean(body.description),
    )

    (audit or AuditLogger()).log_listing_event("created", listing.slug, seller, store.chain_id)
    if notifier is not None:
        notifier.notify_new_listing(
            ListingNotification(
                slug=listing.slug,
                listing_type=listing.listing_type,
                price_usdc=format_usdc(price_micro),
                seller_address=seller,
                max_uses=listing.max_uses,
                app_id=app_id,
                app_name=app_name,
            ),
            store.chain_id,
        )
    return to_owner_view(listing)


async def update_listing(
    store: ListingStore,
    verifier: OwnershipVerifier,
    body: UpdateListingRequest,
    audit: Optional[AuditLogger] = None,
) -> ListingOwnerView:
    """Apply an owner-signed partial update to an active listing."""
    _require_chain(store, body.chain_id)
    seller = normalize_address(body.seller_address)
    provided = body.model_fields_set

    price_micro = _price_to_micro(body.price_usdc) if body.price_usdc is not None else None

    await verifier.require_owner(
        seller,
        "UpdateListing",
        {
            "slug": body.slug,
            "inviteUrl": body.invite_url or "",
            "appUrl": body.app_url or "",
            "accessCode": body.access_code or "",
            "priceUsdc": format_usdc(price_micro) if price_micro is not None else "",
            "sellerAddress": seller,
            "appId": body.app_id or "",
            "appName": body.app_name or "",
        },
        body.nonce,
        body.signature,
        body.chain_id,
    )

    listing = await store.find_by_slug(body.slug)
    if listing is None or listing.seller_address != seller or listing.status != STATUS_ACTIVE:
        raise ListingNotFound("Listing not found or not owned by seller")

    changes: dict = {}
    if price_micro is not None:
        changes["price_micro_usdc"] = price_micro

    secret_fields = {
        LISTING_TYPE_INVITE_LINK: ("invite_url",),
        LISTING_TYPE_ACCESS_CODE: ("app_url", "access_code"),
    }[listing.listing_type]
    for name in ("invite_url", "app_url", "access_code"):
        if name not in provided or getattr(body, name) is None:
            continue
        if name not in secret_fields:
            raise InvalidRequest(f"{name} does not apply to {listing.listing_type} listings")
        value = _clean(getattr(body, name))
        if not value:
            raise InvalidRequest(f"Invalid {name.replace('_', ' ')}")
        changes[name] = value

    app_id = _clean(body.app_id) if "app_id" in provided else listing.app_id
    app_name = _clean(body.app_name) if "app_name" in provided else listing.app_name
    if not app_id and not app_name:
        raise InvalidRequest("Either app_id or app_name must be provided")
    if "app_id" in provided:
        changes["app_id"] = app_id
    if "app_name" in provided:
        changes["app_name"] = app_name

    if not changes:
        raise InvalidRequest("No fields to update")

    if not await store.update_fields(body.slug, seller, changes):
        raise ListingNotFound("Listing not found or not owned by seller")

    (audit or AuditLogger()).log_listing_event(
        "updated", body.slug, seller, store.chain_id, changed_fields=sorted(changes)
    )
    updated = await store.find_by_slug(body.slug)
    if updated is None:
        raise ListingNotFound()
    return to_owner_view(updated)


async def delete_listing(
    store: ListingStore,
    verifier: OwnershipVerifier,
    body: DeleteListingRequest,
    audit: Optional[AuditLogger] = None,
) -> None:
    """Remove an active listing after verifying the DeleteListing signature."""
    _require_chain(store, body.chain_id)
    seller = normalize_address(body.seller_address)

    await verifier.require_owner(
        seller,
        "DeleteListing",
        {"slug": body.slug, "sellerAddress": seller},
        body.nonce,
        body.signature,
        body.chain_id,
    )

    if not await store.delete(body.slug, seller):
        raise ListingNotFound("Listing not found or not owned by seller")
    (audit or AuditLogger()).log_listing_event("deleted", body.slug, seller, store.chain_id)


async def get_listing(store: ListingStore, slug: str) -> ListingPublicView:
    listing = await store.find_by_slug(slug)
    if listing is None:
        raise ListingNotFound()
    return to_public_view(listing)


async def browse_listings(
    store: ListingStore,
    limit: int = 50,
    skip: int = 0,
    app: Optional[str] = None,
    available_only: bool = False,
) -> ListingsPage:
    """Newest listings, or one app's listings cheapest first when *app* is given."""
    app = _clean(app)
    if app:
        matches = await store.find_by_app(app, available_only=available_only)
        listings = matches[skip : skip + limit]
    else:
        listings = await store.list_recent(limit=limit, skip=skip)
    return ListingsPage(
        listings=[to_public_view(listing) for listing in listings],
        limit=limit,
        skip=skip,
    )


async def lowest_price(
    store: ListingStore,
    app_id: Optional[str] = None,
    app_name: Optional[str] = None,
) -> LowestPriceResponse:
    """Cheapest available price for an app, matched on either id or name."""
    keys = [key for key in (_clean(app_id), _clean(app_name)) if key]
    if not keys:
        raise InvalidRequest("app_id or app_name is required")

    prices = [price for key in keys if (price := await store.lowest_available_price(key)) is not None]
    return LowestPriceResponse(
        app_key=keys[0],
        lowest_price_usdc=format_usdc(min(prices)) if prices else None,
    )


async def list_apps(store: ListingStore) -> list[AppSummary]:
    """Featured catalog first, then custom apps aggregated from listings."""
    summaries: dict[str, AppSummary] = {
        app.app_id: AppSummary(
            app_id=app.app_id,
            app_name=app.app_name,
            featured=True,
            icon_path=app.icon_path,
        )
        for app in FEATURED_APPS
    }
    lowest: dict[str, int] = {}

    for listing in await store.list_all():
        featured = get_featured_app(listing.app_id)
        if featured is not None:
            key = featured.app_id
        else:
            key = (listing.app_name or listing.app_id or "").lower()
            if not key:
                continue
        summary = summaries.setdefault(
            key,
            AppSummary(
                app_id=listing.app_id,
                app_name=display_name(listing.app_id, listing.app_name),
                featured=False,
            ),
        )
        summary.total_listings += 1
        if listing.is_available:
            summary.active_listings += 1
            if key not in lowest or listing.price_micro_usdc < lowest[key]:
                lowest[key] = listing.price_micro_usdc

    for key, price in lowest.items():
        summaries[key].lowest_price_usdc = format_usdc(price)

    featured_keys = [app.app_id for app in FEATURED_APPS]
    custom = sorted(
        (summary for key, summary in summaries.items() if key not in featured_keys),
        key=lambda summary: (-summary.active_listings, summary.app_name.lower()),
    )
    return [summaries[key] for key in featured_keys] + custom
