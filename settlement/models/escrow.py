"""Escrow related models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .user import Tier


class EscrowStatus(str, PyEnum):
    """Status of an escrow."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class Escrow(Base):
    """Funds held between buyer and seller until every milestone is approved."""

    __tablename__ = "escrows"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_escrow_total_positive"),
        CheckConstraint("net_amount >= 0", name="ck_escrow_net_non_negative"),
        CheckConstraint("release_attempts >= 0", name="ck_escrow_release_attempts_non_negative"),
        Index("ix_escrows_status", "status"),
    )

    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), unique=True, nullable=False)
    buyer_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seller_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    tier: Mapped[Tier] = mapped_column(SqlEnum(Tier, name="tier", native_enum=False), nullable=False)
    transaction_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_fees: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[EscrowStatus] = mapped_column(
        SqlEnum(EscrowStatus, name="escrow_status", native_enum=False), nullable=False, default=EscrowStatus.PENDING
    )
    release_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    transaction = relationship("Transaction", back_populates="escrow")
    milestones = relationship(
        "Milestone",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="Milestone.idx",
    )
    disputes = relationship(
        "Dispute",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="Dispute.id",
    )

    __mapper_args__ = {"version_id_col": version}
