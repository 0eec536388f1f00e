"""Direct transfer model."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .user import Tier


class TransferStatus(str, PyEnum):
    """Lifecycle of a fast-path transfer."""

    VALIDATION = "VALIDATION"
    CONFIRMATION = "CONFIRMATION"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class DirectTransfer(Base):
    """Wallet-to-wallet settlement for amounts below the escrow threshold."""

    __tablename__ = "direct_transfers"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_direct_transfer_positive_amount"),
        CheckConstraint("net_amount >= 0", name="ck_direct_transfer_net_non_negative"),
        CheckConstraint("attempts >= 0", name="ck_direct_transfer_attempts_non_negative"),
        Index("ix_direct_transfers_status", "status"),
    )

    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), unique=True, nullable=False)
    buyer_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    tier: Mapped[Tier] = mapped_column(SqlEnum(Tier, name="tier", native_enum=False), nullable=False)
    transaction_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_fees: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[TransferStatus] = mapped_column(
        SqlEnum(TransferStatus, name="transfer_status", native_enum=False),
        nullable=False,
        default=TransferStatus.VALIDATION,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    transaction = relationship("Transaction", back_populates="direct_transfer")

    __mapper_args__ = {"version_id_col": version}
