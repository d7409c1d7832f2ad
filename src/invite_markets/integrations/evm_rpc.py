"""Minimal JSON-RPC client for contract-wallet signature checks (ERC-1271)."""

from __future__ import annotations

import itertools

import httpx
import structlog
from eth_abi import encode as abi_encode

from invite_markets.config import settings

log = structlog.get_logger()

# bytes4(keccak256("isValidSignature(bytes32,bytes)"))
ERC1271_MAGIC_VALUE = "0x1626ba7e"


class EvmRpcConnectionError(Exception):
    """Raised when the RPC node cannot be reached."""


class EvmRpcCallError(Exception):
    """Raised when the node answers with a JSON-RPC error (e.g. a revert)."""


class EvmRpcClient:
    """Issues read-only ``eth_call`` requests against one RPC endpoint."""

    def __init__(self, rpc_url: str | None = None, timeout: float | None = None) -> None:
        self.rpc_url = rpc_url if rpc_url is not None else settings.RPC_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._ids = itertools.count(1)

    @property
    def configured(self) -> bool:
        return bool(self.rpc_url)

    async def eth_call(self, to: str, data: str) -> str:
        payload = {
            "jsonrpc": "2.0",
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
            "id": next(self._ids),
        }
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EvmRpcConnectionError(f"RPC request failed: {exc}") from exc

        body = response.json()
        if "error" in body:
            raise EvmRpcCallError(str(body["error"]))
        return body.get("result") or "0x"

    async def is_valid_signature(self, contract: str, digest: bytes, signature: bytes) -> bool:
        """Ask a contract wallet whether it accepts *signature* over *digest*.

        A reverting call (EOA, undeployed wallet, wrong signer) counts as
        not valid.  Only transport failures raise.
        """
        calldata = ERC1271_MAGIC_VALUE + abi_encode(["bytes32", "bytes"], [digest, signature]).hex()
        try:
            result = await self.eth_call(contract, calldata)
        except EvmRpcCallError:
            log.info("erc1271_call_reverted", contract=contract)
            return False
        return result.lower().startswith(ERC1271_MAGIC_VALUE)
