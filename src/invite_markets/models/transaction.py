"""Append-only sale ledger."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from invite_markets.models.base import Base


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # No foreign key: listings may be deleted after they sell
    listing_slug: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    seller_address: Mapped[str] = mapped_column(String(42), nullable=False)
    buyer_address: Mapped[str] = mapped_column(String(42), nullable=False)
    app_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    price_micro_usdc: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("price_micro_usdc > 0", name="ck_txn_price_positive"),
    )
