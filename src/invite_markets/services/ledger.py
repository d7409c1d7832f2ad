"""Append-only transaction ledger -- sale records, feeds and seller stats."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from invite_markets.models import Transaction

log = structlog.get_logger()

RECENT_SALES_LIMIT = 100


@dataclass(frozen=True)
class SellerStats:
    total_sales: int
    total_revenue_micro_usdc: int


class TransactionLedger:
    """Writes and aggregates sale records for one chain.

    Rows are never updated or deleted here; the Postgres schema enforces the
    same with an immutability trigger.
    """

    def __init__(self, db: AsyncSession, chain_id: int) -> None:
        self._db = db
        self.chain_id = chain_id

    async def append(
        self,
        *,
        listing_slug: str,
        seller_address: str,
        buyer_address: str,
        app_id: Optional[str],
        price_micro_usdc: int,
        tx_hash: Optional[str] = None,
    ) -> Transaction:
        txn = Transaction(
            listing_slug=listing_slug,
            seller_address=seller_address.lower(),
            buyer_address=buyer_address.lower(),
            app_id=app_id,
            chain_id=self.chain_id,
            price_micro_usdc=price_micro_usdc,
            tx_hash=tx_hash,
        )
        self._db.add(txn)
        try:
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        return txn

    async def recent_for_app(
        self, key: str, limit: int = RECENT_SALES_LIMIT
    ) -> list[Transaction]:
        """Newest sales for an app (case-insensitive) or a single listing slug."""
        result = await self._db.execute(
            select(Transaction)
            .where(
                Transaction.chain_id == self.chain_id,
                or_(
                    func.lower(Transaction.app_id) == key.strip().lower(),
                    Transaction.listing_slug == key,
                ),
            )
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_recent(self, limit: int = 50, skip: int = 0) -> list[Transaction]:
        result = await self._db.execute(
            select(Transaction)
            .where(Transaction.chain_id == self.chain_id)
            .order_by(Transaction.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self._db.execute(
            select(func.count())
            .select_from(Transaction)
            .where(Transaction.chain_id == self.chain_id)
        )
        return int(result.scalar_one())

    async def seller_stats(self, seller_address: str) -> SellerStats:
        result = await self._db.execute(
            select(
                func.count(Transaction.transaction_id),
                func.coalesce(func.sum(Transaction.price_micro_usdc), 0),
            ).where(
                Transaction.chain_id == self.chain_id,
                Transaction.seller_address == seller_address.lower(),
            )
        )
        total_sales, revenue = result.one()
        return SellerStats(total_sales=int(total_sales), total_revenue_micro_usdc=int(revenue))

    async def buyer_history(self, buyer_address: str) -> list[Transaction]:
        result = await self._db.execute(
            select(Transaction)
            .where(
                Transaction.chain_id == self.chain_id,
                Transaction.buyer_address == buyer_address.lower(),
            )
            .order_by(Transaction.created_at.desc())
        )
        return list(result.scalars().all())
