"""Per-chain constants for Base mainnet and Base Sepolia."""

from __future__ import annotations

from dataclasses import dataclass

from invite_markets.config import BASE_MAINNET_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID

USDC_DECIMALS = 6


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    network: str
    display_name: str
    usdc_address: str
    # EIP-712 domain of the USDC contract, used by EIP-3009 authorizations
    usdc_name: str
    usdc_version: str
    explorer_url: str

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


CHAINS: dict[int, ChainConfig] = {
    BASE_MAINNET_CHAIN_ID: ChainConfig(
        chain_id=BASE_MAINNET_CHAIN_ID,
        network="base",
        display_name="Base Mainnet",
        usdc_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        usdc_name="USD Coin",
        usdc_version="2",
        explorer_url="https://basescan.org",
    ),
    BASE_SEPOLIA_CHAIN_ID: ChainConfig(
        chain_id=BASE_SEPOLIA_CHAIN_ID,
        network="base-sepolia",
        display_name="Base Sepolia",
        usdc_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        usdc_name="USDC",
        usdc_version="2",
        explorer_url="https://sepolia.basescan.org",
    ),
}


def get_chain(chain_id: int) -> ChainConfig:
    try:
        return CHAINS[chain_id]
    except KeyError:
        raise ValueError(f"Unsupported chain id {chain_id}") from None
