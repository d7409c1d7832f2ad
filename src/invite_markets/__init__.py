"""Invite link and access code marketplace settled with x402 USDC payments."""
