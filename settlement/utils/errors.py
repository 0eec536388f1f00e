"""Standardized error payloads and the settlement error taxonomy."""
from __future__ import annotations

from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class SettlementError(Exception):
    """Base class for rejections raised by the settlement core.

    ``details`` carries the structured context a caller needs to decide
    whether to retry, escalate or abandon (current state, attempted
    transition, unmet precondition).
    """

    code = "SETTLEMENT_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {key: value for key, value in details.items() if value is not None}

    def to_response(self) -> dict[str, Any]:
        payload = error_response(self.code, self.message, self.details)
        payload["error"]["retryable"] = self.retryable
        return payload


class NotFound(SettlementError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidAmount(SettlementError):
    code = "INVALID_AMOUNT"
    status_code = 422


class UnsupportedCurrency(SettlementError):
    code = "UNSUPPORTED_CURRENCY"
    status_code = 422

    def __init__(self, *, currency: str, expected: str) -> None:
        super().__init__(
            f"Only {expected} transactions are settled.",
            currency=currency,
            expected=expected,
        )


class InsufficientBalance(SettlementError):
    code = "INSUFFICIENT_BALANCE"
    status_code = 409

    def __init__(self, *, required: Any, available: Any, wallet_ref: str | None = None) -> None:
        super().__init__(
            "Wallet balance does not cover amount plus fees.",
            required=str(required),
            available=str(available),
            wallet_ref=wallet_ref,
        )


class FeeConfigurationError(SettlementError):
    code = "FEE_CONFIGURATION_ERROR"
    status_code = 500


class MilestoneAllocationError(SettlementError):
    code = "MILESTONE_ALLOCATION_INVALID"
    status_code = 422


class InvalidTransition(SettlementError):
    """A state machine refused an event in the aggregate's current state."""

    status_code = 409
    aggregate = "aggregate"

    def __init__(self, *, current: Any, event: str, allowed_from: Any = None, **details: Any) -> None:
        current_value = getattr(current, "value", current)
        super().__init__(
            f"Cannot {event} {self.aggregate} in state {current_value}.",
            current_state=current_value,
            attempted=event,
            allowed_from=[getattr(s, "value", s) for s in allowed_from] if allowed_from else None,
            **details,
        )


class InvalidMilestoneTransition(InvalidTransition):
    code = "INVALID_MILESTONE_TRANSITION"
    aggregate = "milestone"


class InvalidEscrowState(InvalidTransition):
    code = "INVALID_ESCROW_STATE"
    aggregate = "escrow"


class InvalidTransferState(InvalidTransition):
    code = "INVALID_TRANSFER_STATE"
    aggregate = "direct transfer"


class InvalidDisputeState(InvalidTransition):
    code = "INVALID_DISPUTE_STATE"
    aggregate = "dispute"


class DisputeAlreadyOpen(SettlementError):
    code = "DISPUTE_ALREADY_OPEN"
    status_code = 409


class EscrowNotReleasable(SettlementError):
    code = "ESCROW_NOT_RELEASABLE"
    status_code = 409

    def __init__(self, *, escrow_id: int, outstanding: list[int]) -> None:
        super().__init__(
            "Every milestone must be approved before release.",
            escrow_id=escrow_id,
            outstanding_milestone_ids=outstanding,
        )
        self.outstanding = outstanding


class ProcessingTimeout(SettlementError):
    code = "PROCESSING_TIMEOUT"
    status_code = 504
    retryable = True


class ExternalLedgerError(SettlementError):
    code = "EXTERNAL_LEDGER_ERROR"
    status_code = 502
    retryable = True


class ConcurrentModification(SettlementError):
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    retryable = True


__all__ = [
    "error_response",
    "SettlementError",
    "NotFound",
    "InvalidAmount",
    "InsufficientBalance",
    "UnsupportedCurrency",
    "FeeConfigurationError",
    "MilestoneAllocationError",
    "InvalidTransition",
    "InvalidMilestoneTransition",
    "InvalidEscrowState",
    "InvalidTransferState",
    "InvalidDisputeState",
    "DisputeAlreadyOpen",
    "EscrowNotReleasable",
    "ProcessingTimeout",
    "ExternalLedgerError",
    "ConcurrentModification",
]
