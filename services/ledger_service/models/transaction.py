"""Transaction model: append-mostly ledger of monetary movements."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.ledger_service.models.enums import (
    Currency,
    TransactionStatus,
    TransactionType,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Transaction(Base):
    """One monetary movement, optionally backed by an on-chain transfer.

    Moves forward only. CONFIRMED and FAILED are terminal: afterwards only
    ``txn_metadata`` may still be enriched.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_auth_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    market_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, index=True, nullable=True
    )  # markets live in orders_service
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, index=True, nullable=True
    )

    type: Mapped[TransactionType] = mapped_column(
        SAEnum(
            TransactionType,
            name="ledger_transaction_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(
            TransactionStatus,
            name="ledger_transaction_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TransactionStatus.PENDING,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    currency: Mapped[Currency] = mapped_column(
        SAEnum(
            Currency,
            name="ledger_currency_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=Currency.SOL,
        nullable=False,
    )

    # On-chain reference
    transaction_hash: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    blockchain_signature: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    from_wallet: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    to_wallet: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gas_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 8), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    txn_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, nullable=True
    )  # {"block_number": 123, "order_number": "..."}

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("ix_transactions_user_created", "user_auth_id", "created_at"),
        Index("ix_transactions_type_status", "type", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (TransactionStatus.CONFIRMED, TransactionStatus.FAILED)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.type.value} {self.status.value}>"
