"""create_transactions_table

Revision ID: 8d2e4b6a0c11
Revises:
Create Date: 2026-10-18 09:05:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "8d2e4b6a0c11"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

TRANSACTION_TYPE = sa.Enum(
    "funding",
    "withdrawal",
    "purchase",
    "sale",
    "refund",
    "fee",
    name="ledger_transaction_type_enum",
)
TRANSACTION_STATUS = sa.Enum(
    "pending",
    "processing",
    "confirmed",
    "failed",
    "cancelled",
    name="ledger_transaction_status_enum",
)
CURRENCY = sa.Enum("SOL", "USDC", "TOKEN", name="ledger_currency_enum")


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_auth_id", sa.String(255), nullable=False),
        sa.Column("market_id", sa.Uuid(), nullable=True),
        sa.Column("order_id", sa.Uuid(), nullable=True),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("status", TRANSACTION_STATUS, nullable=False),
        sa.Column("amount", sa.Numeric(18, 8), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("transaction_hash", sa.String(255), nullable=True),
        sa.Column("blockchain_signature", sa.String(255), nullable=True),
        sa.Column("from_wallet", sa.String(255), nullable=True),
        sa.Column("to_wallet", sa.String(255), nullable=True),
        sa.Column("gas_fee", sa.Numeric(18, 8), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", JSON, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("transaction_hash"),
        sa.CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )
    op.create_index("ix_transactions_user_auth_id", "transactions", ["user_auth_id"])
    op.create_index("ix_transactions_market_id", "transactions", ["market_id"])
    op.create_index("ix_transactions_order_id", "transactions", ["order_id"])
    op.create_index(
        "ix_transactions_user_created", "transactions", ["user_auth_id", "created_at"]
    )
    op.create_index("ix_transactions_type_status", "transactions", ["type", "status"])


def downgrade() -> None:
    op.drop_table("transactions")

    bind = op.get_bind()
    for enum in (TRANSACTION_TYPE, TRANSACTION_STATUS, CURRENCY):
        enum.drop(bind, checkfirst=True)
