"""x402 payment settlement through a remote facilitator.

The buyer's wallet client signs an EIP-3009 USDC authorization and sends it
base64-encoded in the ``X-PAYMENT`` header.  This adapter builds the
``exact`` payment requirements for the listing, asks the facilitator to
``/verify`` and then ``/settle`` the payload, and reports the outcome as a
``SettlementResult`` the purchase flow forwards without interpreting.

Usage:
    adapter = FacilitatorSettlementAdapter(base_url="https://x402.org/facilitator")
    result = await adapter.settle(SettlementRequest(...))
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog

from invite_markets.chains import get_chain
from invite_markets.config import settings
from invite_markets.errors import UpstreamUnavailable

log = structlog.get_logger()

X402_VERSION = 1
PAYMENT_SCHEME = "exact"
MAX_TIMEOUT_SECONDS = 300
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SettlementRequest:
    """What a purchase must pay: amount, payee, network and proof."""

    price_micro_usdc: int
    pay_to: str
    chain_id: int
    payment_header: Optional[str]
    resource_url: str
    description: str = ""


@dataclass
class SettlementResult:
    """Facilitator outcome in HTTP terms, forwarded verbatim on failure."""

    status: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    payer: Optional[str] = None
    tx_hash: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 200


class SettlementAdapter(Protocol):
    """Structural interface the purchase orchestrator depends on."""

    async def settle(self, request: SettlementRequest) -> SettlementResult: ...


# ---------------------------------------------------------------------------
# Header codec
# ---------------------------------------------------------------------------

def decode_payment_header(header: str) -> dict[str, Any]:
    """Decode a base64 JSON ``X-PAYMENT`` header.

    Raises ValueError when the header is not base64 JSON describing an object.
    """
    try:
        decoded = base64.b64decode(header, validate=True)
        payload = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("Malformed X-PAYMENT header") from exc
    if not isinstance(payload, dict):
        raise ValueError("X-PAYMENT header must encode a JSON object")
    return payload


def encode_payment_response(receipt: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(receipt).encode()).decode()


def _normalize_payment_payload(
    payload: dict[str, Any], requirements: dict[str, Any]
) -> dict[str, Any]:
    """Coerce a client payment payload into the shape facilitators accept.

    Some wallet clients send the EIP-3009 authorization amounts and validity
    bounds as JSON numbers and omit the envelope fields.  Facilitators reject
    both, so numbers become decimal strings and missing envelope fields are
    copied from the requirements.  Delete once clients emit the canonical
    shape.
    """
    normalized = dict(payload)
    normalized.setdefault("x402Version", X402_VERSION)
    normalized.setdefault("scheme", requirements["scheme"])
    normalized.setdefault("network", requirements["network"])

    inner = normalized.get("payload")
    if isinstance(inner, dict) and isinstance(inner.get("authorization"), dict):
        authorization = dict(inner["authorization"])
        for key in ("value", "validAfter", "validBefore"):
            value = authorization.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                authorization[key] = str(int(value))
        normalized["payload"] = {**inner, "authorization": authorization}
    return normalized


def _authorization_payer(payload: dict[str, Any]) -> Optional[str]:
    inner = payload.get("payload")
    if not isinstance(inner, dict):
        return None
    authorization = inner.get("authorization")
    if not isinstance(authorization, dict):
        return None
    payer = authorization.get("from")
    return payer if isinstance(payer, str) else None


# ---------------------------------------------------------------------------
# FacilitatorSettlementAdapter
# ---------------------------------------------------------------------------

class FacilitatorSettlementAdapter:
    """Verifies and settles x402 ``exact`` payments via facilitator HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.FACILITATOR_URL).rstrip("/")
        self.secret_key = secret_key if secret_key is not None else settings.FACILITATOR_SECRET_KEY
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_requirements(self, request: SettlementRequest) -> dict[str, Any]:
        chain = get_chain(request.chain_id)
        return {
            "scheme": PAYMENT_SCHEME,
            "network": chain.network,
            "maxAmountRequired": str(request.price_micro_usdc),
            "resource": request.resource_url,
            "description": request.description,
            "mimeType": "application/json",
            "payTo": request.pay_to,
            "maxTimeoutSeconds": MAX_TIMEOUT_SECONDS,
            "asset": chain.usdc_address,
            "extra": {"name": chain.usdc_name, "version": chain.usdc_version},
        }

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        """Verify then settle the buyer's payment.

        Returns a 402 result (with the requirements the client should sign)
        when the proof is missing, malformed, invalid or fails to settle,
        and a 200 result carrying the ``X-PAYMENT-RESPONSE`` header on
        success.

        Raises:
            UpstreamUnavailable: when the facilitator cannot be reached or
                answers with a server error.
        """
        requirements = self.build_requirements(request)

        if not request.payment_header:
            return self._payment_required("X-PAYMENT header is required", requirements)

        try:
            payload = decode_payment_header(request.payment_header)
        except ValueError as exc:
            log.info("x402_payment_header_invalid", error=str(exc))
            return self._payment_required("Invalid or malformed payment header", requirements)

        payload = _normalize_payment_payload(payload, requirements)
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": payload,
            "paymentRequirements": requirements,
        }

        verification = await self._post("/verify", body)
        if not verification.get("isValid"):
            reason = verification.get("invalidReason") or "Payment verification failed"
            log.info("x402_verify_rejected", reason=reason, pay_to=request.pay_to)
            return self._payment_required(reason, requirements, payer=verification.get("payer"))

        settlement = await self._post("/settle", body)
        if not settlement.get("success"):
            reason = settlement.get("errorReason") or "Payment settlement failed"
            log.warning("x402_settle_rejected", reason=reason, pay_to=request.pay_to)
            payer = settlement.get("payer") or verification.get("payer")
            return self._payment_required(reason, requirements, payer=payer)

        tx_hash = settlement.get("transaction") or settlement.get("txHash")
        payer = (
            settlement.get("payer")
            or verification.get("payer")
            or _authorization_payer(payload)
        )
        receipt = {
            "success": True,
            "transaction": tx_hash,
            "network": settlement.get("network") or requirements["network"],
            "payer": payer,
        }
        log.info("x402_settled", tx_hash=tx_hash, payer=payer, amount=requirements["maxAmountRequired"])
        return SettlementResult(
            status=200,
            body=receipt,
            headers={PAYMENT_RESPONSE_HEADER: encode_payment_response(receipt)},
            payer=payer,
            tx_hash=tx_hash,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _payment_required(
        error: str, requirements: dict[str, Any], payer: str | None = None
    ) -> SettlementResult:
        body: dict[str, Any] = {
            "x402Version": X402_VERSION,
            "error": error,
            "accepts": [requirements],
        }
        if payer:
            body["payer"] = payer
        return SettlementResult(status=402, body=body, payer=payer)

    def _headers(self) -> dict[str, str]:
        if self.secret_key:
            return {"X-Secret-Key": self.secret_key}
        return {}

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers(),
            ) as client:
                response = await client.post(path, json=body)
        except httpx.HTTPError as exc:
            log.error("x402_facilitator_unreachable", path=path, error=str(exc))
            raise UpstreamUnavailable("Payment facilitator unavailable") from exc

        if response.status_code >= 500:
            log.error("x402_facilitator_error", path=path, status=response.status_code)
            raise UpstreamUnavailable("Payment facilitator unavailable")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            log.error("x402_facilitator_malformed", path=path, status=response.status_code)
            raise UpstreamUnavailable("Payment facilitator returned a malformed response")
        return data
