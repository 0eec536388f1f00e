"""User account model."""
from enum import Enum as PyEnum

from sqlalchemy import Enum as SqlEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Tier(str, PyEnum):
    """Subscription tiers; they drive fee percentages."""

    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class UserAccount(Base):
    """A marketplace buyer or seller known to the settlement core."""

    __tablename__ = "user_accounts"

    ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    tier: Mapped[Tier] = mapped_column(SqlEnum(Tier, name="tier", native_enum=False), nullable=False, default=Tier.FREE)
