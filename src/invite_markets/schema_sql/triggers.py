"""Trigger functions and trigger DDL for the initial schema."""

# ---- Trigger functions ----

FN_RAISE_IMMUTABLE = """
CREATE OR REPLACE FUNCTION raise_immutable_error()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""

FN_PROTECT_LISTING_IDENTITY = """
CREATE OR REPLACE FUNCTION protect_listing_identity()
RETURNS TRIGGER AS $$
BEGIN
    IF OLD.slug           IS DISTINCT FROM NEW.slug
    OR OLD.seller_address IS DISTINCT FROM NEW.seller_address
    OR OLD.chain_id       IS DISTINCT FROM NEW.chain_id
    OR OLD.listing_type   IS DISTINCT FROM NEW.listing_type
    THEN
        RAISE EXCEPTION 'Cannot modify listing identity fields';
    END IF;
    IF NEW.purchase_count < OLD.purchase_count THEN
        RAISE EXCEPTION 'purchase_count cannot decrease';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

# ---- Triggers ----

TRG_TRANSACTIONS_IMMUTABLE = """
CREATE TRIGGER trg_transactions_immutable
    BEFORE UPDATE OR DELETE ON transactions
    FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();
"""

TRG_LISTING_IDENTITY = """
CREATE TRIGGER trg_listing_identity
    BEFORE UPDATE ON listings
    FOR EACH ROW EXECUTE FUNCTION protect_listing_identity();
"""

FUNCTIONS_ALL = [FN_RAISE_IMMUTABLE, FN_PROTECT_LISTING_IDENTITY]
TRIGGERS_ALL = [TRG_TRANSACTIONS_IMMUTABLE, TRG_LISTING_IDENTITY]
