"""Wallet and ledger entry models backing the default ledger adapter."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, Enum as SqlEnum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class EntryDirection(str, PyEnum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class Wallet(Base):
    """Spendable balance of one party."""

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("available >= 0", name="ck_wallet_available_non_negative"),
        CheckConstraint("pending >= 0", name="ck_wallet_pending_non_negative"),
    )

    ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    available: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    pending: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    entries = relationship("LedgerEntry", back_populates="wallet", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class LedgerEntry(Base):
    """One debit or credit applied to a wallet, unique per idempotency key."""

    __tablename__ = "ledger_entries"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_ledger_entry_positive_amount"),)

    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False, index=True)
    direction: Mapped[EntryDirection] = mapped_column(
        SqlEnum(EntryDirection, name="entry_direction", native_enum=False), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    memo: Mapped[str | None] = mapped_column(String(255), nullable=True)

    wallet = relationship("Wallet", back_populates="entries")
