"""Initial schema -- listings, the sale ledger, indexes and protective triggers.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op

from invite_markets.schema_sql import indexes, tables, triggers

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    _execute_all(tables.ALL)
    _execute_all(indexes.ALL)
    _execute_all(triggers.FUNCTIONS_ALL)
    _execute_all(triggers.TRIGGERS_ALL)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_listing_identity ON listings;")
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_immutable ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS protect_listing_identity();")
    op.execute("DROP FUNCTION IF EXISTS raise_immutable_error();")
    for table in ("transactions", "listings"):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
