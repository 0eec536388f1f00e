"""User account schemas."""
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from settlement.models.user import Tier


class UserCreate(BaseModel):
    ref: str = Field(min_length=1, max_length=64)
    email: EmailStr
    tier: Tier = Tier.FREE


class UserRead(BaseModel):
    id: int
    ref: str
    email: EmailStr
    tier: Tier

    model_config = ConfigDict(from_attributes=True)
