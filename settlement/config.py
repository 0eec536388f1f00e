"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# "dev" | "staging" | "prod"
ENV = os.getenv("SETTLEMENT_ENV", "dev").lower()
DEV_ENVS = {"dev", "local", "test"}

# Roles recognised by the API key layer
API_ROLES = {"party", "resolver", "admin"}


class Settings(BaseSettings):
    """Environment configuration for the settlement service."""

    app_env: str = ENV
    database_url: str = "sqlite:///settlement.db"
    SECRET_KEY: str = "change-me"
    DEV_API_KEY: str | None = Field(
        default="dev-secret-key",
        validation_alias=AliasChoices("DEV_API_KEY", "API_KEY"),
    )
    # token -> role
    API_KEYS: dict[str, str] = Field(default_factory=dict)
    # token -> party ref; a bound party key may only act for that party
    API_KEY_PARTIES: dict[str, str] = Field(default_factory=dict)
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://bell24h.com",
        "https://app.bell24h.com",
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False
    SCHEDULER_ENABLED: bool = False
    STUCK_PROCESSING_MINUTES: int = 15

    # --- Settlement policy -----------------------------------------------
    DEFAULT_CURRENCY: str = "INR"
    ESCROW_THRESHOLD: Decimal = Decimal("500000")
    GST_RATE: Decimal = Decimal("0.18")
    GST_BASE: Literal["fee", "principal"] = "fee"
    FREE_DIRECT_FEE_RATE: Decimal = Decimal("0.025")
    FREE_ESCROW_FEE_RATE: Decimal = Decimal("0.040")
    PRO_DIRECT_FEE_RATE: Decimal = Decimal("0.020")
    PRO_ESCROW_FEE_RATE: Decimal = Decimal("0.030")
    ENTERPRISE_DIRECT_FEE_RATE: Decimal = Decimal("0.015")
    ENTERPRISE_ESCROW_FEE_RATE: Decimal = Decimal("0.025")
    # percentage points allowed between milestone percentages and amounts
    PERCENTAGE_TOLERANCE: Decimal = Decimal("0.01")
    PLATFORM_WALLET_REF: str | None = None

    # --- Ledger boundary -------------------------------------------------
    LEDGER_TIMEOUT_SECONDS: float = 5.0
    # escrow release attempts before FAILED
    PROCESSING_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    # a direct transfer returns to CONFIRMATION once, then fails
    TRANSFER_MAX_ATTEMPTS: int = Field(default=2, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("PLATFORM_WALLET_REF", "SENTRY_DSN")
    @classmethod
    def _strip_empty(cls, value: str | None) -> str | None:
        """Normalise blank optional strings to ``None``."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("API_KEYS")
    @classmethod
    def _known_roles(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = {role for role in value.values() if role not in API_ROLES}
        if unknown:
            raise ValueError(f"Unknown API roles: {sorted(unknown)}")
        return value

    @property
    def dev_key_allowed(self) -> bool:
        return self.app_env.lower() in DEV_ENVS


class AppInfo(BaseModel):
    name: str = "bell24h-settlement"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = ["ENV", "DEV_ENVS", "API_ROLES", "Settings", "AppInfo", "get_settings"]
