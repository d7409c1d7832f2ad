"""Wallet signature checks for listing owners.

Mutations (create, update, delete) carry an EIP-712 typed-data signature
binding the exact intent, the seller address and a millisecond-timestamp
nonce.  Seller read access uses a plain EIP-191 message containing a
``Timestamp: <ms>`` line.  Both accept EOA signatures (ECDSA recovery) and
smart-contract wallets (ERC-1271 ``isValidSignature`` over JSON-RPC).

Replay protection is a freshness window only: a captured signature stays
usable until its nonce ages out.
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Optional

import structlog
from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data
from eth_utils import keccak, to_bytes

from invite_markets.config import settings
from invite_markets.errors import (
    InvalidRequest,
    InvalidSignature,
    SignatureExpired,
    UpstreamUnavailable,
)
from invite_markets.integrations.evm_rpc import EvmRpcClient, EvmRpcConnectionError

log = structlog.get_logger()

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
TIMESTAMP_RE = re.compile(r"Timestamp:\s*(\d+)")
ADDRESS_LINE_RE = re.compile(r"Address:\s*(0x[0-9a-fA-F]{40})")

DOMAIN_NAME = "Invite Markets"
DOMAIN_VERSION = "1"


# ---------------------------------------------------------------------------
# EIP-712 types
# ---------------------------------------------------------------------------

EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
]

OWNER_INTENT_TYPES: dict[str, list[dict[str, str]]] = {
    "CreateListing": [
        {"name": "listingType", "type": "string"},
        {"name": "inviteUrl", "type": "string"},
        {"name": "appUrl", "type": "string"},
        {"name": "accessCode", "type": "string"},
        {"name": "priceUsdc", "type": "string"},
        {"name": "sellerAddress", "type": "address"},
        {"name": "appId", "type": "string"},
        {"name": "appName", "type": "string"},
        {"name": "maxUses", "type": "string"},
        {"name": "nonce", "type": "uint256"},
    ],
    "UpdateListing": [
        {"name": "slug", "type": "string"},
        {"name": "inviteUrl", "type": "string"},
        {"name": "appUrl", "type": "string"},
        {"name": "accessCode", "type": "string"},
        {"name": "priceUsdc", "type": "string"},
        {"name": "sellerAddress", "type": "address"},
        {"name": "appId", "type": "string"},
        {"name": "appName", "type": "string"},
        {"name": "nonce", "type": "uint256"},
    ],
    "DeleteListing": [
        {"name": "slug", "type": "string"},
        {"name": "sellerAddress", "type": "address"},
        {"name": "nonce", "type": "uint256"},
    ],
}


def build_typed_data(primary_type: str, message: dict[str, Any], chain_id: int) -> dict[str, Any]:
    """Full EIP-712 structure for an owner intent, as wallets sign it."""
    if primary_type not in OWNER_INTENT_TYPES:
        raise ValueError(f"Unknown owner intent {primary_type!r}")
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN,
            primary_type: OWNER_INTENT_TYPES[primary_type],
        },
        "primaryType": primary_type,
        "domain": {"name": DOMAIN_NAME, "version": DOMAIN_VERSION, "chainId": chain_id},
        "message": message,
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_address(address: str) -> str:
    """Validate a 0x-prefixed 20-byte hex address and lower-case it."""
    if not isinstance(address, str) or not ADDRESS_RE.match(address):
        raise InvalidRequest("Invalid Ethereum address format")
    return address.lower()


def _signature_bytes(signature: str) -> bytes:
    try:
        return to_bytes(hexstr=signature)
    except (TypeError, ValueError) as exc:
        raise InvalidSignature("Malformed signature") from exc


def _digest(signable: SignableMessage) -> bytes:
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


# ---------------------------------------------------------------------------
# OwnershipVerifier
# ---------------------------------------------------------------------------

class OwnershipVerifier:
    """Checks freshness and signer identity for owner-signed requests."""

    def __init__(
        self,
        rpc: Optional[EvmRpcClient] = None,
        max_age_seconds: int | None = None,
        future_skew_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rpc = rpc
        self.max_age_ms = (
            max_age_seconds
            if max_age_seconds is not None
            else settings.SIGNATURE_MAX_AGE_SECONDS
        ) * 1000
        self.future_skew_ms = (
            future_skew_seconds
            if future_skew_seconds is not None
            else settings.SIGNATURE_FUTURE_SKEW_SECONDS
        ) * 1000
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Typed-data owner intents
    # ------------------------------------------------------------------

    def check_nonce_fresh(self, nonce: int) -> None:
        if abs(self._now_ms() - nonce) > self.max_age_ms:
            raise SignatureExpired("Signature expired. Please try again.")

    async def verify_owner_request(
        self,
        claimed_address: str,
        primary_type: str,
        message: dict[str, Any],
        nonce: int,
        signature: str,
        chain_id: int,
    ) -> bool:
        """Return whether *claimed_address* signed *message* as *primary_type*.

        Freshness is enforced first: a nonce outside the window raises
        SignatureExpired whatever the signature says.
        """
        self.check_nonce_fresh(nonce)
        address = normalize_address(claimed_address)
        typed = build_typed_data(primary_type, {**message, "nonce": nonce}, chain_id)
        signable = encode_typed_data(full_message=typed)
        return await self._signature_matches(address, signable, _signature_bytes(signature))

    async def require_owner(
        self,
        claimed_address: str,
        primary_type: str,
        message: dict[str, Any],
        nonce: int,
        signature: str,
        chain_id: int,
    ) -> None:
        valid = await self.verify_owner_request(
            claimed_address, primary_type, message, nonce, signature, chain_id
        )
        if not valid:
            log.info("owner_signature_rejected", address=claimed_address.lower(), intent=primary_type)
            raise InvalidSignature("Invalid signature. Please sign the message with your wallet.")

    # ------------------------------------------------------------------
    # Freeform read-auth
    # ------------------------------------------------------------------

    async def verify_read_auth(self, address: str, message: str, signature: str) -> None:
        """Authenticate a seller reading their own secret payloads.

        Raises InvalidSignature on a missing or future timestamp, an address
        line naming someone else, or a bad signature, and SignatureExpired
        when the timestamp is older than the freshness window.
        """
        address = normalize_address(address)

        match = TIMESTAMP_RE.search(message)
        if match is None:
            raise InvalidSignature("Missing timestamp")
        timestamp = int(match.group(1))
        now = self._now_ms()
        if timestamp - now > self.future_skew_ms:
            raise InvalidSignature("Invalid timestamp")
        if now - timestamp > self.max_age_ms:
            raise SignatureExpired()

        address_line = ADDRESS_LINE_RE.search(message)
        if address_line is not None and address_line.group(1).lower() != address:
            raise InvalidSignature("Address mismatch")

        signable = encode_defunct(text=message)
        if not await self._signature_matches(address, signable, _signature_bytes(signature)):
            raise InvalidSignature()

    # ------------------------------------------------------------------
    # Signature primitives
    # ------------------------------------------------------------------

    async def _signature_matches(
        self, address: str, signable: SignableMessage, signature: bytes
    ) -> bool:
        try:
            recovered = Account.recover_message(signable, signature=signature)
        except Exception as exc:
            # Contract-wallet signatures are not 65-byte ECDSA and fail here
            log.debug("ecdsa_recovery_failed", error=str(exc))
            recovered = None

        if recovered is not None and recovered.lower() == address:
            return True

        if self.rpc is None or not self.rpc.configured:
            return False

        try:
            return await self.rpc.is_valid_signature(address, _digest(signable), signature)
        except EvmRpcConnectionError as exc:
            log.error("erc1271_rpc_unreachable", address=address, error=str(exc))
            raise UpstreamUnavailable("Signature verification unavailable") from exc
