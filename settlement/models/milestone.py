"""Milestone model definitions."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class MilestoneStatus(str, PyEnum):
    """Possible statuses for a milestone."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    APPROVED = "APPROVED"


class Milestone(Base):
    """A discrete, independently confirmable portion of an escrow."""

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint("escrow_id", "idx", name="uq_milestone_idx"),
        CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_milestone_percentage_range"),
        CheckConstraint("idx > 0", name="ck_milestone_positive_idx"),
        CheckConstraint("required_confirmations >= 1", name="ck_milestone_required_confirmations"),
        CheckConstraint(
            "current_confirmations >= 0 AND current_confirmations <= required_confirmations",
            name="ck_milestone_confirmations_bounded",
        ),
    )

    escrow_id: Mapped[int] = mapped_column(ForeignKey("escrows.id"), nullable=False, index=True)
    idx: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    status: Mapped[MilestoneStatus] = mapped_column(
        SqlEnum(MilestoneStatus, name="milestone_status", native_enum=False),
        nullable=False,
        default=MilestoneStatus.PENDING,
    )
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    required_confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evidence: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    escrow = relationship("Escrow", back_populates="milestones")

    __mapper_args__ = {"version_id_col": version}
