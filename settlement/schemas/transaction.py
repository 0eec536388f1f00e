"""Transaction schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from settlement.models.transaction import PathKind
from settlement.models.user import Tier

from .escrow import EscrowRead
from .milestone import MilestoneSpec
from .transfer import DirectTransferRead


class TransactionCreate(BaseModel):
    # sign and magnitude are checked by the router so callers get INVALID_AMOUNT
    amount: Decimal
    # defaults to DEFAULT_CURRENCY
    currency: str | None = Field(default=None, pattern="^[A-Z]{3}$")
    buyer_ref: str = Field(min_length=1, max_length=64)
    seller_ref: str = Field(min_length=1, max_length=64)
    gst_amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    milestones: list[MilestoneSpec] | None = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def _distinct_parties(self) -> "TransactionCreate":
        if self.buyer_ref == self.seller_ref:
            raise ValueError("buyer_ref and seller_ref must differ")
        return self


class FeeBreakdown(BaseModel):
    transaction_fee: Decimal
    gst_amount: Decimal
    total_fees: Decimal
    net_amount: Decimal


class RoutingPreview(BaseModel):
    accepted: bool
    path_kind: PathKind | None
    tier: Tier
    reason: str
    fees: FeeBreakdown | None
    available_balance: Decimal
    rejection: dict | None = None


class TransactionRead(BaseModel):
    id: int
    amount: Decimal
    currency: str
    buyer_ref: str
    seller_ref: str
    path_kind: PathKind
    created_at: datetime
    direct_transfer: DirectTransferRead | None = None
    escrow: EscrowRead | None = None

    model_config = ConfigDict(from_attributes=True)
