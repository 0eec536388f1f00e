"""Wallet schemas."""
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class WalletCreate(BaseModel):
    ref: str = Field(min_length=1, max_length=64)
    currency: str = Field(default="INR", pattern="^[A-Z]{3}$")
    opening_balance: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class WalletRead(BaseModel):
    id: int
    ref: str
    currency: str
    available: Decimal
    pending: Decimal

    model_config = ConfigDict(from_attributes=True)


class BalanceRead(BaseModel):
    wallet_ref: str
    available: Decimal
    pending: Decimal
    total: Decimal
