"""Decimal helpers for monetary amounts."""
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
BASIS = Decimal("0.0001")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert ``value`` to ``Decimal`` without float artefacts.

    Accepts Decimal, int, float and str. Raises ``ValueError`` when the value
    cannot be parsed or is not finite.
    """

    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() avoids binary float artefacts
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise ValueError(f"Invalid money amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return result


def quantize_money(value: Any) -> Decimal:
    """Round to two decimals, half up."""

    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_percentage(value: Any) -> Decimal:
    return to_decimal(value).quantize(BASIS, rounding=ROUND_HALF_UP)


def share_of(total: Decimal, percentage: Decimal) -> Decimal:
    """Return ``percentage`` % of ``total`` rounded down to the cent."""

    return (to_decimal(total) * to_decimal(percentage) / HUNDRED).quantize(CENT, rounding=ROUND_DOWN)


__all__ = ["CENT", "HUNDRED", "to_decimal", "quantize_money", "quantize_percentage", "share_of"]
