"""Buyer purchase endpoint (x402 payment in, secret payload out)."""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from invite_markets.api.dependencies import get_purchase_orchestrator
from invite_markets.money import format_usdc
from invite_markets.services.purchase_orchestrator import PurchaseOrchestrator

router = APIRouter(prefix="/api/v1/purchase", tags=["purchase"])


@router.post("/{slug}")
async def purchase_listing(
    slug: str,
    request: Request,
    x_payment: Optional[str] = Header(default=None),
    orchestrator: PurchaseOrchestrator = Depends(get_purchase_orchestrator),
):
    """Settle the buyer's payment and return the listing's secret payload.

    Without a valid ``X-PAYMENT`` header the facilitator's 402 body is
    returned unchanged so x402 clients can sign and retry.
    """
    result = await orchestrator.request_purchase(
        slug=slug,
        payment_header=x_payment,
        resource_url=str(request.url),
    )
    body = {
        "success": True,
        "slug": result.slug,
        **asdict(result.secret),
        "price_usdc": format_usdc(result.price_micro_usdc),
        "buyer_address": result.buyer_address,
        "tx_hash": result.tx_hash,
    }
    return JSONResponse(content=body, headers=result.payment_headers)
