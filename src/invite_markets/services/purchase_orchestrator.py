"""Purchase orchestrator -- pay, claim one unit of inventory, release the secret.

Flow: LOOKUP -> AVAILABILITY -> SETTLE -> CLAIM -> RECORD -> RELEASE

1. Load the listing by slug on the configured chain (404 if absent)
2. Refuse unavailable listings before any payment is attempted (409)
3. Hand the payment proof to the settlement adapter; any non-200 outcome
   is raised as ``PaymentFailed`` and forwarded to the buyer verbatim
4. Claim one unit with the store's conditional inventory update.  When a
   concurrent purchase changed the count first, re-read and retry while
   the listing is still available; otherwise the buyer has paid for
   nothing and gets ``ListingSoldOut`` plus an audit entry for manual
   compensation
5. Append the sale to the ledger.  A failure here is logged, never raised:
   the money has moved and the secret must still be delivered
6. Schedule the sale notification and return the secret payload

Claiming before recording means the losing side of a race never writes a
ledger row, so every ledger row corresponds to exactly one released unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

import structlog

from invite_markets.catalog import display_name
from invite_markets.errors import (
    ListingNotFound,
    ListingSoldOut,
    ListingUnavailable,
    PaymentFailed,
)
from invite_markets.integrations.discord import SaleNotification
from invite_markets.integrations.x402_facilitator import SettlementAdapter, SettlementRequest
from invite_markets.models import LISTING_TYPE_ACCESS_CODE, LISTING_TYPE_INVITE_LINK, Listing
from invite_markets.money import format_usdc
from invite_markets.services.audit_logger import AuditLogger
from invite_markets.services.ledger import TransactionLedger
from invite_markets.services.listing_store import ClaimedUnit, InventorySnapshot, ListingStore

log = structlog.get_logger()

MAX_CLAIM_ATTEMPTS = 10


# ---------------------------------------------------------------------------
# Secret payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InviteLinkSecret:
    invite_url: str
    listing_type: str = LISTING_TYPE_INVITE_LINK


@dataclass(frozen=True)
class AccessCodeSecret:
    app_url: str
    access_code: str
    listing_type: str = LISTING_TYPE_ACCESS_CODE


SecretPayload = Union[InviteLinkSecret, AccessCodeSecret]


def secret_for(listing: Union[Listing, ClaimedUnit]) -> SecretPayload:
    """The one place a listing's secret fields are read for a buyer."""
    if listing.listing_type == LISTING_TYPE_INVITE_LINK:
        return InviteLinkSecret(invite_url=listing.invite_url or "")
    if listing.listing_type == LISTING_TYPE_ACCESS_CODE:
        return AccessCodeSecret(
            app_url=listing.app_url or "",
            access_code=listing.access_code or "",
        )
    raise ValueError(f"Unknown listing type {listing.listing_type!r}")


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class PurchaseResult:
    slug: str
    secret: SecretPayload
    buyer_address: Optional[str]
    price_micro_usdc: int
    tx_hash: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _SaleTerms:
    """Listing fields captured before settlement; the ORM row may be refreshed."""

    slug: str
    price_micro_usdc: int
    seller_address: str
    app_id: Optional[str]
    app_name: Optional[str]

    @property
    def app_key(self) -> Optional[str]:
        return self.app_id or self.app_name


class SaleNotifier(Protocol):
    def notify_sale(self, data: SaleNotification, chain_id: int) -> object: ...


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class PurchaseOrchestrator:
    """Runs one buyer's purchase of one listing unit."""

    def __init__(
        self,
        store: ListingStore,
        ledger: TransactionLedger,
        settlement: SettlementAdapter,
        notifier: Optional[SaleNotifier] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._settlement = settlement
        self._notifier = notifier
        self._audit = audit or AuditLogger()

    @property
    def chain_id(self) -> int:
        return self._store.chain_id

    async def request_purchase(
        self,
        slug: str,
        payment_header: Optional[str],
        resource_url: str,
    ) -> PurchaseResult:
        listing = await self._store.find_by_slug(slug)
        if listing is None:
            log.info("purchase_listing_not_found", slug=slug, chain_id=self.chain_id)
            raise ListingNotFound()

        reason = listing.unavailable_reason
        if reason is not None:
            log.info("purchase_listing_unavailable", slug=slug, reason=reason)
            raise ListingUnavailable()

        terms = _SaleTerms(
            slug=listing.slug,
            price_micro_usdc=listing.price_micro_usdc,
            seller_address=listing.seller_address,
            app_id=listing.app_id,
            app_name=listing.app_name,
        )

        settlement = await self._settlement.settle(
            SettlementRequest(
                price_micro_usdc=terms.price_micro_usdc,
                pay_to=terms.seller_address,
                chain_id=self.chain_id,
                payment_header=payment_header,
                resource_url=resource_url,
                description=f"Invite to {display_name(terms.app_id, terms.app_name)}",
            )
        )
        if not settlement.succeeded:
            log.info("purchase_payment_not_settled", slug=slug, status=settlement.status)
            raise PaymentFailed(settlement.status, settlement.body, settlement.headers)

        buyer = settlement.payer.lower() if settlement.payer else None

        claimed = await self._claim_unit(listing)
        if claimed is None:
            self._audit.log_paid_but_sold_out(
                slug=slug,
                buyer_address=buyer,
                price_micro_usdc=terms.price_micro_usdc,
                chain_id=self.chain_id,
                tx_hash=settlement.tx_hash,
            )
            raise ListingSoldOut()
        secret = secret_for(claimed)

        transaction_id = await self._record_sale(terms, buyer, settlement.tx_hash)
        self._audit.log_sale(
            slug=slug,
            seller_address=terms.seller_address,
            buyer_address=buyer or "",
            price_micro_usdc=terms.price_micro_usdc,
            chain_id=self.chain_id,
            tx_hash=settlement.tx_hash,
            transaction_id=transaction_id,
        )
        self._notify(terms, buyer)

        return PurchaseResult(
            slug=slug,
            secret=secret,
            buyer_address=buyer,
            price_micro_usdc=terms.price_micro_usdc,
            tx_hash=settlement.tx_hash,
            transaction_id=transaction_id,
            payment_headers=dict(settlement.headers),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _claim_unit(self, listing: Listing) -> Optional[ClaimedUnit]:
        """Consume one unit, returning the secret as of the winning update.

        Returns None once the listing is no longer available.
        """
        slug = listing.slug
        snapshot = InventorySnapshot.of(listing)
        for attempt in range(1, MAX_CLAIM_ATTEMPTS + 1):
            claimed = await self._store.consume_inventory(slug, snapshot)
            if claimed is not None:
                return claimed

            current = await self._store.find_by_slug(slug)
            if current is None or not current.is_available:
                log.info(
                    "purchase_inventory_exhausted",
                    slug=slug,
                    attempt=attempt,
                    reason=current.unavailable_reason if current else "deleted",
                )
                return None
            snapshot = InventorySnapshot.of(current)
            log.info("purchase_inventory_retry", slug=slug, attempt=attempt)

        log.warning("purchase_claim_attempts_exhausted", slug=slug)
        return None

    async def _record_sale(
        self, terms: _SaleTerms, buyer: Optional[str], tx_hash: Optional[str]
    ) -> Optional[str]:
        try:
            txn = await self._ledger.append(
                listing_slug=terms.slug,
                seller_address=terms.seller_address,
                buyer_address=buyer or "",
                app_id=terms.app_key,
                price_micro_usdc=terms.price_micro_usdc,
                tx_hash=tx_hash,
            )
        except Exception as exc:
            self._audit.log_ledger_append_failed(
                slug=terms.slug,
                buyer_address=buyer,
                price_micro_usdc=terms.price_micro_usdc,
                chain_id=self.chain_id,
                tx_hash=tx_hash,
                error=str(exc),
            )
            return None
        return str(txn.transaction_id)

    def _notify(self, terms: _SaleTerms, buyer: Optional[str]) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify_sale(
                SaleNotification(
                    slug=terms.slug,
                    price_usdc=format_usdc(terms.price_micro_usdc),
                    seller_address=terms.seller_address,
                    buyer_address=buyer or "",
                    app_id=terms.app_id,
                    app_name=terms.app_name,
                ),
                self.chain_id,
            )
        except Exception as exc:
            log.warning("sale_notification_dispatch_failed", slug=terms.slug, error=str(exc))
