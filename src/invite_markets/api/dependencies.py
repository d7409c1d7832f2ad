"""Shared FastAPI dependencies wiring request sessions to services.

Long-lived collaborators (settlement adapter, verifier, notifier) are built
once in the application lifespan and read from ``app.state``; stores and
the orchestrator are built per request around that request's session.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from invite_markets.config import settings
from invite_markets.database import get_db
from invite_markets.integrations.discord import DiscordNotifier
from invite_markets.integrations.x402_facilitator import SettlementAdapter
from invite_markets.services.audit_logger import AuditLogger
from invite_markets.services.authenticity import OwnershipVerifier
from invite_markets.services.ledger import TransactionLedger
from invite_markets.services.listing_store import ListingStore
from invite_markets.services.purchase_orchestrator import PurchaseOrchestrator

_audit_logger = AuditLogger()


def get_listing_store(db: AsyncSession = Depends(get_db)) -> ListingStore:
    return ListingStore(db, settings.chain_id)


def get_ledger(db: AsyncSession = Depends(get_db)) -> TransactionLedger:
    return TransactionLedger(db, settings.chain_id)


def get_settlement_adapter(request: Request) -> SettlementAdapter:
    return request.app.state.settlement


def get_verifier(request: Request) -> OwnershipVerifier:
    return request.app.state.verifier


def get_notifier(request: Request) -> Optional[DiscordNotifier]:
    return getattr(request.app.state, "notifier", None)


def get_audit_logger() -> AuditLogger:
    return _audit_logger


def get_purchase_orchestrator(
    store: ListingStore = Depends(get_listing_store),
    ledger: TransactionLedger = Depends(get_ledger),
    settlement: SettlementAdapter = Depends(get_settlement_adapter),
    notifier: Optional[DiscordNotifier] = Depends(get_notifier),
    audit: AuditLogger = Depends(get_audit_logger),
) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(
        store=store,
        ledger=ledger,
        settlement=settlement,
        notifier=notifier,
        audit=audit,
    )
