"""Escrow schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from settlement.models.escrow import EscrowStatus
from settlement.models.user import Tier

from .milestone import MilestoneRead


class EscrowRead(BaseModel):
    id: int
    transaction_id: int
    buyer_ref: str
    seller_ref: str
    total_amount: Decimal
    currency: str
    tier: Tier
    transaction_fee: Decimal
    gst_amount: Decimal
    total_fees: Decimal
    net_amount: Decimal
    status: EscrowStatus
    release_attempts: int
    funded_at: datetime | None
    released_at: datetime | None
    milestones: list[MilestoneRead]

    model_config = ConfigDict(from_attributes=True)


class EscrowProgressRead(BaseModel):
    escrow_id: int
    status: EscrowStatus
    progress: int
    milestones_total: int
    milestones_done: int
    outstanding_milestone_ids: list[int]
