"""CREATE TABLE statements for listings and the sale ledger."""

LISTINGS = """
CREATE TABLE listings (
    listing_id        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    slug              VARCHAR(32) NOT NULL UNIQUE,
    listing_type      VARCHAR(20) NOT NULL DEFAULT 'invite_link'
                      CONSTRAINT ck_listing_type
                      CHECK (listing_type IN ('invite_link','access_code')),
    invite_url        TEXT,
    access_code       TEXT,
    app_url           TEXT,
    price_micro_usdc  BIGINT NOT NULL
                      CONSTRAINT ck_listing_price_positive CHECK (price_micro_usdc > 0),
    seller_address    VARCHAR(42) NOT NULL,
    chain_id          INTEGER NOT NULL,
    app_id            VARCHAR(100),
    app_name          VARCHAR(100),
    description       TEXT,
    max_uses          INTEGER NOT NULL DEFAULT 1
                      CONSTRAINT ck_listing_max_uses CHECK (max_uses = -1 OR max_uses > 0),
    purchase_count    INTEGER NOT NULL DEFAULT 0
                      CONSTRAINT ck_listing_purchase_count_nonneg CHECK (purchase_count >= 0),
    status            VARCHAR(20) NOT NULL DEFAULT 'active'
                      CONSTRAINT ck_listing_status
                      CHECK (status IN ('active','sold','cancelled')),
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT ck_listing_app_present
        CHECK (app_id IS NOT NULL OR app_name IS NOT NULL),
    CONSTRAINT ck_listing_seller_lowercase
        CHECK (seller_address = lower(seller_address))
);
"""

TRANSACTIONS = """
CREATE TABLE transactions (
    transaction_id    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    listing_slug      VARCHAR(32) NOT NULL,
    seller_address    VARCHAR(42) NOT NULL,
    buyer_address     VARCHAR(42) NOT NULL,
    app_id            VARCHAR(100),
    chain_id          INTEGER NOT NULL,
    price_micro_usdc  BIGINT NOT NULL
                      CONSTRAINT ck_txn_price_positive CHECK (price_micro_usdc > 0),
    tx_hash           VARCHAR(66),
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [LISTINGS, TRANSACTIONS]
