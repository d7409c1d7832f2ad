"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # listings
    "CREATE INDEX idx_listings_chain_created ON listings(chain_id, created_at DESC);",
    "CREATE INDEX idx_listings_seller ON listings(chain_id, seller_address, created_at DESC);",
    "CREATE INDEX idx_listings_app_id ON listings(chain_id, lower(app_id));",
    "CREATE INDEX idx_listings_app_name ON listings(chain_id, lower(app_name));",
    "CREATE INDEX idx_listings_active_price ON listings(chain_id, price_micro_usdc) "
    "WHERE status = 'active';",
    # transactions
    "CREATE INDEX idx_txn_chain_created ON transactions(chain_id, created_at DESC);",
    "CREATE INDEX idx_txn_listing ON transactions(listing_slug);",
    "CREATE INDEX idx_txn_app ON transactions(chain_id, lower(app_id), created_at DESC);",
    "CREATE INDEX idx_txn_seller ON transactions(chain_id, seller_address);",
    "CREATE INDEX idx_txn_buyer ON transactions(chain_id, buyer_address, created_at DESC);",
    "CREATE UNIQUE INDEX idx_txn_tx_hash ON transactions(tx_hash) WHERE tx_hash IS NOT NULL;",
]
