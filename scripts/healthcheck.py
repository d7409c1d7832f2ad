#!/usr/bin/env python3
"""Monitoring / healthcheck script for Invite Markets.

Checks the availability of:
    - FastAPI application (/health)
    - PostgreSQL
    - Redis
    - x402 facilitator (/supported)
    - EVM JSON-RPC endpoint (eth_chainId), when RPC_URL is set

Outputs a JSON array of ``{service, status, latency_ms}`` objects.

Exit codes:
    0 -- all services healthy
    1 -- one or more services unhealthy
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from typing import Any, Awaitable, Callable

import asyncpg  # type: ignore[import-untyped]
import httpx
from redis.asyncio import Redis

# ---------------------------------------------------------------------------
# Configuration -- all overridable via environment variables
# ---------------------------------------------------------------------------

APP_URL = os.environ.get("APP_URL", "http://localhost:8000")
DATABASE_URL = os.environ.get(
    "DATABASE_URL", "postgresql://app:devpassword@db:5432/invitemarkets"
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")
FACILITATOR_URL = os.environ.get("FACILITATOR_URL", "https://x402.org/facilitator")
RPC_URL = os.environ.get("RPC_URL", "")

CHECK_TIMEOUT = float(os.environ.get("HEALTHCHECK_TIMEOUT", "5"))


def _pg_dsn(url: str) -> str:
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


async def _timed(service: str, probe: Callable[[], Awaitable[bool]]) -> dict[str, Any]:
    """Run *probe* and report its outcome and latency under *service*."""
    start = time.monotonic()
    try:
        healthy = await probe()
    except Exception as exc:
        return {
            "service": service,
            "status": "unhealthy",
            "latency_ms": round((time.monotonic() - start) * 1000, 2),
            "error": str(exc),
        }
    return {
        "service": service,
        "status": "healthy" if healthy else "unhealthy",
        "latency_ms": round((time.monotonic() - start) * 1000, 2),
    }


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

async def check_app(client: httpx.AsyncClient) -> dict[str, Any]:
    async def probe() -> bool:
        resp = await client.get(f"{APP_URL}/health", timeout=CHECK_TIMEOUT)
        return resp.status_code == 200

    return await _timed("app", probe)


async def check_postgres() -> dict[str, Any]:
    """Open a connection and make sure both marketplace tables exist."""

    async def probe() -> bool:
        conn = await asyncio.wait_for(
            asyncpg.connect(_pg_dsn(DATABASE_URL)), timeout=CHECK_TIMEOUT
        )
        try:
            found = await conn.fetchval(
                "SELECT count(*) FROM information_schema.tables "
                "WHERE table_name IN ('listings', 'transactions')"
            )
        finally:
            await conn.close()
        return found == 2

    return await _timed("postgres", probe)


async def check_redis() -> dict[str, Any]:
    async def probe() -> bool:
        redis = Redis.from_url(REDIS_URL, decode_responses=True)
        try:
            return bool(await asyncio.wait_for(redis.ping(), timeout=CHECK_TIMEOUT))
        finally:
            await redis.close()

    return await _timed("redis", probe)


async def check_facilitator(client: httpx.AsyncClient) -> dict[str, Any]:
    """The facilitator lists its supported schemes at ``/supported``."""

    async def probe() -> bool:
        resp = await client.get(
            f"{FACILITATOR_URL.rstrip('/')}/supported", timeout=CHECK_TIMEOUT
        )
        return resp.status_code == 200

    return await _timed("facilitator", probe)


async def check_rpc(client: httpx.AsyncClient) -> dict[str, Any]:
    async def probe() -> bool:
        resp = await client.post(
            RPC_URL,
            json={"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []},
            timeout=CHECK_TIMEOUT,
        )
        return resp.status_code == 200 and "result" in resp.json()

    return await _timed("rpc", probe)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

async def run_checks() -> list[dict[str, Any]]:
    async with httpx.AsyncClient() as client:
        checks = [
            check_app(client),
            check_postgres(),
            check_redis(),
            check_facilitator(client),
        ]
        if RPC_URL:
            checks.append(check_rpc(client))
        results = await asyncio.gather(*checks)
    return list(results)


async def main() -> int:
    results = await run_checks()

    json.dump(results, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 0 if all(r["status"] == "healthy" for r in results) else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
