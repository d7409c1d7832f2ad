"""Structured JSON audit logger for sales and listing ownership events.

Every entry carries an ``audit: true`` flag so production log pipelines can
filter on it.  ``paid_but_sold_out`` entries are the operator's worklist for
manual compensation: the buyer's payment settled on-chain but the listing
ran out of inventory before their purchase could claim a unit.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog


log = structlog.get_logger()


class AuditLogger:
    """Structured audit logger for marketplace events.

    All methods are synchronous -- they only emit log lines.
    """

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def log_sale(
        self,
        slug: str,
        seller_address: str,
        buyer_address: str,
        price_micro_usdc: int,
        chain_id: int,
        tx_hash: Optional[str] = None,
        transaction_id=None,
    ) -> None:
        log.info(
            "audit_event",
            event_type="sale",
            timestamp=datetime.now(timezone.utc).isoformat(),
            slug=slug,
            seller_address=seller_address,
            buyer_address=buyer_address,
            price_micro_usdc=price_micro_usdc,
            chain_id=chain_id,
            tx_hash=tx_hash,
            transaction_id=str(transaction_id) if transaction_id else None,
            audit=True,
        )

    def log_paid_but_sold_out(
        self,
        slug: str,
        buyer_address: Optional[str],
        price_micro_usdc: int,
        chain_id: int,
        tx_hash: Optional[str] = None,
    ) -> None:
        """Payment settled but no inventory was left to hand out."""
        log.warning(
            "audit_event",
            event_type="paid_but_sold_out",
            timestamp=datetime.now(timezone.utc).isoformat(),
            slug=slug,
            buyer_address=buyer_address,
            price_micro_usdc=price_micro_usdc,
            chain_id=chain_id,
            tx_hash=tx_hash,
            requires_compensation=True,
            audit=True,
        )

    def log_ledger_append_failed(
        self,
        slug: str,
        buyer_address: Optional[str],
        price_micro_usdc: int,
        chain_id: int,
        tx_hash: Optional[str],
        error: str,
    ) -> None:
        log.error(
            "audit_event",
            event_type="ledger_append_failed",
            timestamp=datetime.now(timezone.utc).isoformat(),
            slug=slug,
            buyer_address=buyer_address,
            price_micro_usdc=price_micro_usdc,
            chain_id=chain_id,
            tx_hash=tx_hash,
            error=error,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Listing lifecycle
    # ------------------------------------------------------------------

    def log_listing_event(
        self,
        action: str,
        slug: str,
        seller_address: str,
        chain_id: int,
        changed_fields: Optional[list[str]] = None,
    ) -> None:
        """Record an owner-signed create, update or delete."""
        log.info(
            "audit_event",
            event_type=f"listing_{action}",
            timestamp=datetime.now(timezone.utc).isoformat(),
            slug=slug,
            seller_address=seller_address,
            chain_id=chain_id,
            changed_fields=changed_fields,
            audit=True,
        )
