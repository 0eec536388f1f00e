"""Dispute schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from settlement.models.dispute import DisputeOutcome, DisputeStatus


class DisputeCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    milestone_id: int | None = None


class DisputeResolve(BaseModel):
    outcome: DisputeOutcome
    note: str | None = None


class DisputeRead(BaseModel):
    id: int
    escrow_id: int
    milestone_id: int | None
    title: str
    description: str
    status: DisputeStatus
    opened_by: str
    outcome: DisputeOutcome | None
    resolution_note: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
