"""Dispute model."""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class DisputeStatus(str, PyEnum):
    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"


class DisputeOutcome(str, PyEnum):
    """What happens to the escrow once the dispute is resolved."""

    RESUME = "resume"
    CANCEL = "cancel"


_UNRESOLVED = text("status != 'RESOLVED'")


class Dispute(Base):
    """A contestation that freezes escrow progression until resolved."""

    __tablename__ = "disputes"
    __table_args__ = (
        # At most one unresolved dispute per escrow.
        Index(
            "uq_disputes_unresolved_escrow",
            "escrow_id",
            unique=True,
            sqlite_where=_UNRESOLVED,
            postgresql_where=_UNRESOLVED,
        ),
    )

    escrow_id: Mapped[int] = mapped_column(ForeignKey("escrows.id"), nullable=False, index=True)
    milestone_id: Mapped[int | None] = mapped_column(ForeignKey("milestones.id"), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(
        SqlEnum(DisputeStatus, name="dispute_status", native_enum=False), nullable=False, default=DisputeStatus.OPEN
    )
    opened_by: Mapped[str] = mapped_column(String(100), nullable=False)
    outcome: Mapped[DisputeOutcome | None] = mapped_column(
        SqlEnum(
            DisputeOutcome,
            name="dispute_outcome",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
    )
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    escrow = relationship("Escrow", back_populates="disputes")

    __mapper_args__ = {"version_id_col": version}
