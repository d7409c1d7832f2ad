#!/usr/bin/env python3
"""Record a sale that settled on-chain but never reached the ledger.

Operators run this after finding a ``ledger_append_failed`` audit event or
a reconciliation gap.  The price is snapshotted from the listing unless
``--price-usdc`` is given, in which case the paid amount wins.

The insert is skipped when the ledger already holds the same settlement
transaction hash, or, without a hash, a row for the same listing and buyer
within the last minute.

Usage:
    DATABASE_URL=postgresql://... python scripts/backfill_sale.py \\
        --slug abc12345 --buyer 0x... [--tx-hash 0x...] [--price-usdc 5] \\
        [--chain-id 8453] [--dry-run]

Exit codes:
    0 -- sale recorded (or already present)
    1 -- listing not found or invalid arguments
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import re
import sys
from decimal import Decimal, InvalidOperation

import asyncpg  # type: ignore[import-untyped]

DEFAULT_DATABASE_URL = "postgresql://app:devpassword@db:5432/invitemarkets"
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
MICRO_PER_USDC = 1_000_000


def _get_dsn() -> str:
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.split("\n")[0])
    parser.add_argument("--slug", required=True, help="Listing slug that was purchased")
    parser.add_argument("--buyer", required=True, help="Payer wallet address")
    parser.add_argument("--tx-hash", default=None, help="Settlement transaction hash")
    parser.add_argument("--price-usdc", default=None, help="Amount actually paid, in USDC")
    parser.add_argument(
        "--chain-id",
        type=int,
        default=int(os.environ.get("CHAIN_ID", "8453")),
        help="Chain the payment settled on (default: $CHAIN_ID or 8453)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the row without inserting")
    return parser.parse_args(argv)


def _price_to_micro(value: str) -> int:
    try:
        micro = Decimal(value) * MICRO_PER_USDC
    except InvalidOperation as exc:
        raise ValueError(f"Invalid price {value!r}") from exc
    if micro <= 0 or micro != micro.to_integral_value():
        raise ValueError("Price must be positive with at most 6 decimals")
    return int(micro)


async def backfill(dsn: str, args: argparse.Namespace) -> dict:
    conn: asyncpg.Connection = await asyncpg.connect(dsn)
    try:
        listing = await conn.fetchrow(
            "SELECT slug, seller_address, app_id, app_name, price_micro_usdc "
            "FROM listings WHERE slug = $1 AND chain_id = $2",
            args.slug,
            args.chain_id,
        )
        if listing is None:
            return {"status": "error", "error": f"Listing {args.slug} not found on chain {args.chain_id}"}

        price = (
            _price_to_micro(args.price_usdc)
            if args.price_usdc is not None
            else listing["price_micro_usdc"]
        )
        buyer = args.buyer.lower()

        if args.tx_hash:
            existing = await conn.fetchval(
                "SELECT transaction_id FROM transactions WHERE tx_hash = $1",
                args.tx_hash,
            )
        else:
            existing = await conn.fetchval(
                "SELECT transaction_id FROM transactions "
                "WHERE listing_slug = $1 AND buyer_address = $2 AND chain_id = $3 "
                "AND created_at > now() - interval '1 minute'",
                args.slug,
                buyer,
                args.chain_id,
            )
        if existing is not None:
            return {"status": "exists", "transaction_id": str(existing)}

        row = {
            "listing_slug": listing["slug"],
            "seller_address": listing["seller_address"],
            "buyer_address": buyer,
            "app_id": listing["app_id"] or listing["app_name"],
            "chain_id": args.chain_id,
            "price_micro_usdc": price,
            "tx_hash": args.tx_hash,
        }
        if args.dry_run:
            return {"status": "dry_run", "row": row}

        transaction_id = await conn.fetchval(
            "INSERT INTO transactions "
            "(listing_slug, seller_address, buyer_address, app_id, chain_id, "
            "price_micro_usdc, tx_hash) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7) RETURNING transaction_id",
            row["listing_slug"],
            row["seller_address"],
            row["buyer_address"],
            row["app_id"],
            row["chain_id"],
            row["price_micro_usdc"],
            row["tx_hash"],
        )
        return {"status": "recorded", "transaction_id": str(transaction_id), "row": row}
    finally:
        await conn.close()


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if not ADDRESS_RE.match(args.buyer):
        print(json.dumps({"status": "error", "error": "Invalid buyer address"}))
        return 1
    if args.tx_hash and not TX_HASH_RE.match(args.tx_hash):
        print(json.dumps({"status": "error", "error": "Invalid transaction hash"}))
        return 1

    try:
        result = await backfill(_get_dsn(), args)
    except ValueError as exc:
        result = {"status": "error", "error": str(exc)}

    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 1 if result["status"] == "error" else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
