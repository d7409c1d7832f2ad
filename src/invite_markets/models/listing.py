"""Listing model -- an invite link or access code offered for sale."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from invite_markets.models.base import Base

LISTING_TYPE_INVITE_LINK = "invite_link"
LISTING_TYPE_ACCESS_CODE = "access_code"

STATUS_ACTIVE = "active"
STATUS_SOLD = "sold"
STATUS_CANCELLED = "cancelled"

UNLIMITED_USES = -1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Listing(Base):
    __tablename__ = "listings"

    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    slug: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    listing_type: Mapped[str] = mapped_column(
        String(20), default=LISTING_TYPE_INVITE_LINK, nullable=False
    )

    # Secret payload -- never exposed on public read paths
    invite_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    access_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Public for access-code listings
    app_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    price_micro_usdc: Mapped[int] = mapped_column(BigInteger, nullable=False)
    seller_address: Mapped[str] = mapped_column(String(42), nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)

    app_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    app_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    max_uses: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    purchase_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=STATUS_ACTIVE, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("price_micro_usdc > 0", name="ck_listing_price_positive"),
        CheckConstraint(
            "listing_type IN ('invite_link', 'access_code')",
            name="ck_listing_type",
        ),
        CheckConstraint(
            "status IN ('active', 'sold', 'cancelled')",
            name="ck_listing_status",
        ),
        CheckConstraint(
            "max_uses = -1 OR max_uses > 0", name="ck_listing_max_uses"
        ),
        CheckConstraint(
            "purchase_count >= 0", name="ck_listing_purchase_count_nonneg"
        ),
        CheckConstraint(
            "app_id IS NOT NULL OR app_name IS NOT NULL",
            name="ck_listing_app_present",
        ),
    )

    @property
    def is_available(self) -> bool:
        if self.status != STATUS_ACTIVE:
            return False
        return self.max_uses == UNLIMITED_USES or self.purchase_count < self.max_uses

    @property
    def unavailable_reason(self) -> Optional[str]:
        """Why the listing cannot be bought, or None when it can."""
        if self.status == STATUS_CANCELLED:
            return "cancelled"
        if self.status == STATUS_SOLD:
            return "sold"
        if self.status != STATUS_ACTIVE:
            return "never_active"
        if self.max_uses != UNLIMITED_USES and self.purchase_count >= self.max_uses:
            return "inventory_exhausted"
        return None
