"""Schemas for milestone entities."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from settlement.models.milestone import MilestoneStatus


class MilestoneSpec(BaseModel):
    """One milestone requested at escrow creation.

    Give ``amount``, ``percentage`` or both; the missing one is derived from
    the escrow total.
    """

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    amount: Decimal | None = Field(default=None, gt=Decimal("0"))
    percentage: Decimal | None = Field(default=None, gt=Decimal("0"), le=Decimal("100"))
    required_confirmations: int = Field(default=1, ge=1, le=20)
    due_date: datetime | None = None

    @model_validator(mode="after")
    def _amount_or_percentage(self) -> "MilestoneSpec":
        if self.amount is None and self.percentage is None:
            raise ValueError("Either amount or percentage is required")
        return self


class ConfirmationCreate(BaseModel):
    # reference to a stored document or photo
    evidence_ref: str | None = Field(default=None, max_length=500)


class MilestoneRead(BaseModel):
    id: int
    escrow_id: int
    idx: int
    name: str
    description: str | None
    amount: Decimal
    percentage: Decimal
    status: MilestoneStatus
    due_date: datetime | None
    completed_date: datetime | None
    approved_at: datetime | None
    required_confirmations: int
    current_confirmations: int
    evidence: list[str]

    model_config = ConfigDict(from_attributes=True)
