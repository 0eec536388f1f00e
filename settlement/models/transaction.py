"""Transaction model."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, Enum as SqlEnum, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PathKind(str, PyEnum):
    """Settlement path chosen by the router."""

    DIRECT = "DIRECT"
    ESCROW = "ESCROW"


class Transaction(Base):
    """A proposed transfer between a buyer and a seller.

    Rows are written once when routed; the derived DirectTransfer or Escrow
    carries all subsequent state.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        Index("ix_transactions_created_at", "created_at"),
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    buyer_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seller_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    path_kind: Mapped[PathKind] = mapped_column(SqlEnum(PathKind, name="path_kind", native_enum=False), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)

    direct_transfer = relationship("DirectTransfer", back_populates="transaction", uselist=False)
    escrow = relationship("Escrow", back_populates="transaction", uselist=False)
