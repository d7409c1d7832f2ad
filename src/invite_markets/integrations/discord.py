"""Discord webhook notifications for new listings and sales.

The notification types carry only public listing data; invite URLs and
access codes have no field to travel in.  Sends are fire-and-forget: the
``notify_*`` methods schedule a task and return immediately, and every
failure is logged and dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from invite_markets.catalog import display_name
from invite_markets.chains import CHAINS
from invite_markets.config import BASE_MAINNET_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID, settings

log = structlog.get_logger()

COLOR_NEW_LISTING = 0x00FF00
COLOR_SALE = 0x0099FF


# ---------------------------------------------------------------------------
# Notification payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ListingNotification:
    slug: str
    listing_type: str
    price_usdc: str
    seller_address: str
    max_uses: int
    app_id: Optional[str] = None
    app_name: Optional[str] = None


@dataclass(frozen=True)
class SaleNotification:
    slug: str
    price_usdc: str
    seller_address: str
    buyer_address: str
    app_id: Optional[str] = None
    app_name: Optional[str] = None


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def truncate_address(address: str) -> str:
    if len(address) <= 13:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_uses(max_uses: int) -> str:
    if max_uses == -1:
        return "Unlimited"
    if max_uses == 1:
        return "Single use"
    return f"{max_uses} uses"


def _network_name(chain_id: int) -> str:
    chain = CHAINS.get(chain_id)
    return chain.display_name if chain else f"Chain {chain_id}"


# ---------------------------------------------------------------------------
# DiscordNotifier
# ---------------------------------------------------------------------------

class DiscordNotifier:
    """Posts embeds to the webhook configured for the listing's chain."""

    def __init__(
        self,
        webhooks: dict[int, str] | None = None,
        public_base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        if webhooks is None:
            webhooks = {
                BASE_MAINNET_CHAIN_ID: settings.DISCORD_WEBHOOK_MAINNET,
                BASE_SEPOLIA_CHAIN_ID: settings.DISCORD_WEBHOOK_TESTNET,
            }
        self.webhooks = {chain: url for chain, url in webhooks.items() if url}
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Embed builders
    # ------------------------------------------------------------------

    def listing_url(self, slug: str) -> str:
        return f"{self.public_base_url}/listing/{slug}"

    def build_listing_embed(self, data: ListingNotification, chain_id: int) -> dict[str, Any]:
        listing_type = "Access Code" if data.listing_type == "access_code" else "Invite Link"
        return {
            "title": f"New Listing: {display_name(data.app_id, data.app_name)}",
            "color": COLOR_NEW_LISTING,
            "url": self.listing_url(data.slug),
            "fields": [
                {"name": "Price", "value": f"{data.price_usdc} USDC", "inline": True},
                {"name": "Seller", "value": truncate_address(data.seller_address), "inline": True},
                {"name": "Type", "value": listing_type, "inline": True},
                {"name": "Uses", "value": format_uses(data.max_uses), "inline": True},
            ],
            "footer": {"text": _network_name(chain_id)},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def build_sale_embed(self, data: SaleNotification, chain_id: int) -> dict[str, Any]:
        return {
            "title": f"Sale: {display_name(data.app_id, data.app_name)}",
            "color": COLOR_SALE,
            "url": self.listing_url(data.slug),
            "fields": [
                {"name": "Price", "value": f"{data.price_usdc} USDC", "inline": True},
                {"name": "Buyer", "value": truncate_address(data.buyer_address), "inline": True},
                {"name": "Seller", "value": truncate_address(data.seller_address), "inline": True},
            ],
            "footer": {"text": _network_name(chain_id)},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_new_listing(self, data: ListingNotification, chain_id: int) -> None:
        await self._post(chain_id, self.build_listing_embed(data, chain_id), kind="new_listing")

    async def send_sale(self, data: SaleNotification, chain_id: int) -> None:
        await self._post(chain_id, self.build_sale_embed(data, chain_id), kind="sale")

    def notify_new_listing(self, data: ListingNotification, chain_id: int) -> asyncio.Task:
        return self._spawn(self.send_new_listing(data, chain_id))

    def notify_sale(self, data: SaleNotification, chain_id: int) -> asyncio.Task:
        return self._spawn(self.send_sale(data, chain_id))

    def _spawn(self, coro) -> asyncio.Task:
        # Hold a reference until done so the task is not garbage collected
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _post(self, chain_id: int, embed: dict[str, Any], kind: str) -> None:
        webhook_url = self.webhooks.get(chain_id)
        if not webhook_url:
            log.info("discord_webhook_not_configured", chain_id=chain_id, kind=kind)
            return

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                response = await client.post(webhook_url, json={"embeds": [embed]})
            if response.status_code >= 400:
                log.warning(
                    "discord_notification_rejected",
                    kind=kind,
                    status=response.status_code,
                )
        except Exception as exc:
            log.warning("discord_notification_failed", kind=kind, error=str(exc))
