"""Listing persistence -- lookups, owner-scoped mutations and inventory CAS.

Every query is scoped to the chain the store was constructed for, so mainnet
and testnet rows sharing one database never mix.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from invite_markets.errors import ListingConflict
from invite_markets.models import STATUS_ACTIVE, STATUS_SOLD, UNLIMITED_USES, Listing

log = structlog.get_logger()

SLUG_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
SLUG_LENGTH = 8
SLUG_ATTEMPTS = 5


def generate_slug() -> str:
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(SLUG_LENGTH))


@dataclass(frozen=True)
class InventorySnapshot:
    """The inventory state a purchase observed before settling."""

    status: str
    purchase_count: int
    max_uses: int

    @classmethod
    def of(cls, listing: Listing) -> InventorySnapshot:
        return cls(
            status=listing.status,
            purchase_count=listing.purchase_count,
            max_uses=listing.max_uses,
        )


@dataclass(frozen=True)
class ClaimedUnit:
    """Secret fields as they stood on the row when a unit was claimed."""

    listing_type: str
    invite_url: Optional[str]
    app_url: Optional[str]
    access_code: Optional[str]


class ListingStore:
    """Encapsulates database operations for listings on one chain."""

    def __init__(self, db: AsyncSession, chain_id: int) -> None:
        self._db = db
        self.chain_id = chain_id

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, **fields: Any) -> Listing:
        """Insert a listing under a freshly generated slug.

        Raises ListingConflict when no free slug is found in SLUG_ATTEMPTS.
        """
        for attempt in range(1, SLUG_ATTEMPTS + 1):
            slug = generate_slug()
            if await self._slug_taken(slug):
                log.info("listing_slug_taken", slug=slug, attempt=attempt)
                continue

            listing = Listing(slug=slug, chain_id=self.chain_id, **fields)
            self._db.add(listing)
            try:
                await self._db.commit()
            except IntegrityError:
                # Lost a race for the same slug between the check and the insert
                await self._db.rollback()
                log.warning("listing_slug_collision", slug=slug, attempt=attempt)
                continue
            return listing

        raise ListingConflict()

    async def _slug_taken(self, slug: str) -> bool:
        # Slugs are unique across chains
        result = await self._db.execute(
            select(Listing.listing_id).where(Listing.slug == slug)
        )
        return result.first() is not None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_slug(self, slug: str) -> Optional[Listing]:
        result = await self._db.execute(
            select(Listing)
            .where(Listing.slug == slug, Listing.chain_id == self.chain_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_seller(self, seller_address: str) -> list[Listing]:
        result = await self._db.execute(
            select(Listing)
            .where(
                Listing.seller_address == seller_address.lower(),
                Listing.chain_id == self.chain_id,
            )
            .order_by(Listing.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_by_app(self, app_key: str, available_only: bool = False) -> list[Listing]:
        """Listings whose app id or app name equals *app_key*, ignoring case.

        Matching is whole-string equality on lower-cased values, never a
        substring or pattern match.
        """
        stmt = select(Listing).where(
            Listing.chain_id == self.chain_id,
            _app_matches(app_key),
        )
        if available_only:
            stmt = stmt.where(*_available_clauses())
        result = await self._db.execute(stmt.order_by(Listing.price_micro_usdc.asc()))
        return list(result.scalars().all())

    async def lowest_available_price(self, app_key: str) -> Optional[int]:
        """Cheapest price among active, non-exhausted listings for an app."""
        result = await self._db.execute(
            select(Listing.price_micro_usdc)
            .where(
                Listing.chain_id == self.chain_id,
                _app_matches(app_key),
                *_available_clauses(),
            )
            .order_by(Listing.price_micro_usdc.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 100, skip: int = 0) -> list[Listing]:
        result = await self._db.execute(
            select(Listing)
            .where(Listing.chain_id == self.chain_id)
            .order_by(Listing.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_all(self) -> list[Listing]:
        result = await self._db.execute(
            select(Listing).where(Listing.chain_id == self.chain_id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Owner mutations (callers verify the owner's signature first)
    # ------------------------------------------------------------------

    async def update_fields(
        self, slug: str, seller_address: str, changes: dict[str, Any]
    ) -> bool:
        """Apply *changes* to an active listing owned by *seller_address*.

        Returns False when no active listing with that slug and owner exists.
        """
        result = await self._db.execute(
            update(Listing)
            .where(
                Listing.slug == slug,
                Listing.chain_id == self.chain_id,
                Listing.seller_address == seller_address.lower(),
                Listing.status == STATUS_ACTIVE,
            )
            .values(**changes, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount == 1

    async def delete(self, slug: str, seller_address: str) -> bool:
        result = await self._db.execute(
            delete(Listing)
            .where(
                Listing.slug == slug,
                Listing.chain_id == self.chain_id,
                Listing.seller_address == seller_address.lower(),
                Listing.status == STATUS_ACTIVE,
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def consume_inventory(
        self, slug: str, expected: InventorySnapshot
    ) -> Optional[ClaimedUnit]:
        """Take one unit of inventory if the row still matches *expected*.

        A single conditional UPDATE keyed on the observed status and
        purchase_count: of several concurrent callers holding the same
        snapshot, at most one gets a ClaimedUnit; the rest get None.  The
        status flips to ``sold`` when the new count reaches ``max_uses``.

        The secret is read back by the same statement, so a seller edit that
        landed while the buyer was paying is what the buyer receives.
        """
        if expected.status != STATUS_ACTIVE:
            return None

        new_count = expected.purchase_count + 1
        exhausted = expected.max_uses != UNLIMITED_USES and new_count >= expected.max_uses

        result = await self._db.execute(
            update(Listing)
            .where(
                Listing.slug == slug,
                Listing.chain_id == self.chain_id,
                Listing.status == STATUS_ACTIVE,
                Listing.purchase_count == expected.purchase_count,
                Listing.max_uses == expected.max_uses,
            )
            .values(
                purchase_count=new_count,
                status=STATUS_SOLD if exhausted else STATUS_ACTIVE,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(
                Listing.listing_type,
                Listing.invite_url,
                Listing.app_url,
                Listing.access_code,
            )
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        await self._db.commit()
        if row is None:
            return None
        return ClaimedUnit(
            listing_type=row.listing_type,
            invite_url=row.invite_url,
            app_url=row.app_url,
            access_code=row.access_code,
        )


# ---------------------------------------------------------------------------
# Query fragments
# ---------------------------------------------------------------------------

def _app_matches(app_key: str):
    key = app_key.strip().lower()
    return or_(func.lower(Listing.app_id) == key, func.lower(Listing.app_name) == key)


def _available_clauses():
    return (
        Listing.status == STATUS_ACTIVE,
        or_(
            Listing.max_uses == UNLIMITED_USES,
            Listing.purchase_count < Listing.max_uses,
        ),
    )
