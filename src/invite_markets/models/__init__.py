"""ORM models package -- re-exports all models and the Base class."""

from invite_markets.models.base import Base
from invite_markets.models.listing import (
    LISTING_TYPE_ACCESS_CODE,
    LISTING_TYPE_INVITE_LINK,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_SOLD,
    UNLIMITED_USES,
    Listing,
)
from invite_markets.models.transaction import Transaction

__all__ = [
    "Base",
    "Listing",
    "Transaction",
    "LISTING_TYPE_ACCESS_CODE",
    "LISTING_TYPE_INVITE_LINK",
    "STATUS_ACTIVE",
    "STATUS_CANCELLED",
    "STATUS_SOLD",
    "UNLIMITED_USES",
]
