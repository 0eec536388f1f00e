"""Fee computation for direct and escrow settlement paths.

Pure functions only: callers pass the amount, the payer's tier and the path
and get back an immutable ``Fees`` breakdown. Rates come from a
``FeeSchedule`` built from settings so finance can tune them without code
changes.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal

from settlement.config import Settings, get_settings
from settlement.models.transaction import PathKind
from settlement.models.user import Tier
from settlement.utils.errors import FeeConfigurationError, InvalidAmount
from settlement.utils.money import quantize_money, to_decimal

GstBase = Literal["fee", "principal"]


@dataclass(frozen=True)
class Fees:
    transaction_fee: Decimal
    gst_amount: Decimal
    total_fees: Decimal
    net_amount: Decimal

    def as_dict(self) -> dict[str, str]:
        return {
            "transaction_fee": str(self.transaction_fee),
            "gst_amount": str(self.gst_amount),
            "total_fees": str(self.total_fees),
            "net_amount": str(self.net_amount),
        }


@dataclass(frozen=True)
class FeeSchedule:
    """Tier and path dependent fee rates plus the GST policy."""

    rates: dict[tuple[Tier, PathKind], Decimal]
    gst_rate: Decimal = Decimal("0.18")
    gst_base: GstBase = "fee"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FeeSchedule":
        settings = settings or get_settings()
        return cls(
            rates={
                (Tier.FREE, PathKind.DIRECT): settings.FREE_DIRECT_FEE_RATE,
                (Tier.FREE, PathKind.ESCROW): settings.FREE_ESCROW_FEE_RATE,
                (Tier.PRO, PathKind.DIRECT): settings.PRO_DIRECT_FEE_RATE,
                (Tier.PRO, PathKind.ESCROW): settings.PRO_ESCROW_FEE_RATE,
                (Tier.ENTERPRISE, PathKind.DIRECT): settings.ENTERPRISE_DIRECT_FEE_RATE,
                (Tier.ENTERPRISE, PathKind.ESCROW): settings.ENTERPRISE_ESCROW_FEE_RATE,
            },
            gst_rate=settings.GST_RATE,
            gst_base=settings.GST_BASE,
        )

    def rate(self, tier: Tier, path_kind: PathKind) -> Decimal:
        try:
            rate = self.rates[(Tier(tier), PathKind(path_kind))]
        except KeyError as exc:
            raise FeeConfigurationError(
                "No fee rate configured.", tier=str(tier), path_kind=str(path_kind)
            ) from exc
        if rate < 0:
            raise FeeConfigurationError("Fee rate must not be negative.", tier=tier.value, rate=str(rate))
        return rate


def compute_fees(
    amount: Any,
    tier: Tier,
    path_kind: PathKind,
    *,
    gst_override: Any = None,
    schedule: FeeSchedule | None = None,
) -> Fees:
    """Return the fee breakdown and the net amount the seller receives.

    ``gst_override`` replaces the computed GST verbatim. A breakdown whose
    net amount would be negative is a configuration error, never clamped.
    """

    amount_dec = to_decimal(amount)
    if amount_dec <= 0:
        raise InvalidAmount("Amount must be greater than zero.", amount=str(amount_dec))

    schedule = schedule or FeeSchedule.from_settings()
    transaction_fee = quantize_money(amount_dec * schedule.rate(tier, path_kind))

    if gst_override is not None:
        gst_amount = quantize_money(gst_override)
        if gst_amount < 0:
            raise FeeConfigurationError("GST override must not be negative.", gst_amount=str(gst_amount))
    elif schedule.gst_base == "principal":
        gst_amount = quantize_money(amount_dec * schedule.gst_rate)
    else:
        gst_amount = quantize_money(transaction_fee * schedule.gst_rate)

    total_fees = transaction_fee + gst_amount
    net_amount = quantize_money(amount_dec) - total_fees
    if net_amount < 0:
        raise FeeConfigurationError(
            "Fees exceed the transaction amount.",
            amount=str(amount_dec),
            total_fees=str(total_fees),
            tier=Tier(tier).value,
            path_kind=PathKind(path_kind).value,
        )
    return Fees(
        transaction_fee=transaction_fee,
        gst_amount=gst_amount,
        total_fees=total_fees,
        net_amount=net_amount,
    )


__all__ = ["Fees", "FeeSchedule", "compute_fees"]
