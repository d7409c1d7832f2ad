"""USDC amount conversions.

Prices are stored as integer base units (6 decimals) and shown as decimal
strings, so no float ever touches an amount.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from invite_markets.chains import USDC_DECIMALS

MICRO_PER_USDC = 10**USDC_DECIMALS


def usdc_to_micro(amount: Decimal | int | str) -> int:
    """Convert a USDC amount to base units.

    Raises ValueError for non-numeric input or more than six decimals.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid USDC amount {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid USDC amount {amount!r}")
    micro = value * MICRO_PER_USDC
    if micro != micro.to_integral_value():
        raise ValueError("USDC amounts support at most 6 decimal places")
    return int(micro)


def micro_to_usdc(micro: int) -> Decimal:
    return Decimal(micro) / MICRO_PER_USDC


def format_usdc(micro: int) -> str:
    """Canonical decimal string: ``5000000`` -> ``"5"``, ``1500000`` -> ``"1.5"``."""
    return format(micro_to_usdc(micro).normalize(), "f")
