#!/usr/bin/env python3
"""Inventory / ledger reconciliation script.

Compares each listing's ``purchase_count`` against the number of
``transactions`` rows recorded for its slug on the same chain, and flags
listings whose status disagrees with their inventory.  A listing with more
purchases than ledger rows usually means a ledger append failed after
settlement; look for ``ledger_append_failed`` audit events and use
``backfill_sale.py`` to restore the missing rows.

Usage:
    DATABASE_URL=postgresql://... python scripts/reconcile_inventory.py

Exit codes:
    0 -- all listings match
    1 -- one or more discrepancies found
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

import asyncpg  # type: ignore[import-untyped]

DEFAULT_DATABASE_URL = "postgresql://app:devpassword@db:5432/invitemarkets"


def _get_dsn() -> str:
    """Return a raw ``postgresql://`` DSN (strip any SQLAlchemy dialect prefix)."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


async def reconcile(dsn: str) -> list[dict]:
    """Run the reconciliation and return a list of discrepancy dicts."""
    conn: asyncpg.Connection = await asyncpg.connect(dsn)
    try:
        rows = await conn.fetch(
            """
            SELECT
                l.slug,
                l.chain_id,
                l.status,
                l.max_uses,
                l.purchase_count,
                COUNT(t.transaction_id)::int AS ledger_count
            FROM listings l
            LEFT JOIN transactions t
                   ON t.listing_slug = l.slug AND t.chain_id = l.chain_id
            GROUP BY l.slug, l.chain_id, l.status, l.max_uses, l.purchase_count
            HAVING l.purchase_count <> COUNT(t.transaction_id)
                OR (l.status = 'active' AND l.max_uses <> -1
                    AND l.purchase_count >= l.max_uses)
                OR (l.status = 'sold' AND l.max_uses <> -1
                    AND l.purchase_count < l.max_uses)
            ORDER BY l.chain_id, l.slug
            """
        )

        discrepancies: list[dict] = []
        for row in rows:
            discrepancies.append(
                {
                    "slug": row["slug"],
                    "chain_id": row["chain_id"],
                    "status": row["status"],
                    "max_uses": row["max_uses"],
                    "purchase_count": row["purchase_count"],
                    "ledger_count": row["ledger_count"],
                    "missing_ledger_rows": row["purchase_count"] - row["ledger_count"],
                }
            )
        return discrepancies
    finally:
        await conn.close()


async def main() -> int:
    dsn = _get_dsn()
    discrepancies = await reconcile(dsn)

    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_discrepancies": len(discrepancies),
        "discrepancies": discrepancies,
    }

    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 1 if discrepancies else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
