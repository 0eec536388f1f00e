"""Direct transfer schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from settlement.models.direct_transfer import TransferStatus
from settlement.models.user import Tier


class DirectTransferRead(BaseModel):
    id: int
    transaction_id: int
    buyer_ref: str
    seller_ref: str
    amount: Decimal
    currency: str
    tier: Tier
    transaction_fee: Decimal
    gst_amount: Decimal
    total_fees: Decimal
    net_amount: Decimal
    status: TransferStatus
    attempts: int
    last_error: str | None
    completed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class TransferCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=255)
