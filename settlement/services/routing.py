"""Settlement routing: direct transfer below the threshold, escrow above it."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from settlement.config import get_settings
from settlement.models import DirectTransfer, Escrow, PathKind, Tier, Transaction
from settlement.repositories import TransactionRepository
from settlement.schemas.transaction import TransactionCreate
from settlement.services import escrow as escrow_service
from settlement.services import transfers as transfer_service
from settlement.services.fees import FeeSchedule, Fees, compute_fees
from settlement.services.ledger import Balance, BalanceProvider, TierProvider
from settlement.utils.audit import log_audit
from settlement.utils.errors import (
    InsufficientBalance,
    InvalidAmount,
    SettlementError,
    UnsupportedCurrency,
)
from settlement.utils.money import quantize_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingDecision:
    path_kind: PathKind | None
    fee_estimate: Fees | None
    reason: str
    rejection: SettlementError | None = None

    @property
    def accepted(self) -> bool:
        return self.rejection is None

    def raise_for_rejection(self) -> None:
        if self.rejection is not None:
            raise self.rejection


def route(
    amount: Any,
    tier: Tier,
    balance: Balance | None,
    *,
    gst_override: Any = None,
    currency: str | None = None,
    threshold: Decimal | None = None,
    schedule: FeeSchedule | None = None,
) -> RoutingDecision:
    """Pick the settlement path for ``amount`` without side effects.

    Escrow is mandatory at or above the threshold. Direct transfers also
    need the balance snapshot to cover the amount plus fees; the snapshot is
    advisory, the ledger performs the authoritative compare-and-debit.
    The threshold is expressed in ``DEFAULT_CURRENCY``, the only currency
    settled.
    """

    settings = get_settings()
    if currency is not None and currency != settings.DEFAULT_CURRENCY:
        return RoutingDecision(
            path_kind=None,
            fee_estimate=None,
            reason="Currency is not settled.",
            rejection=UnsupportedCurrency(currency=currency, expected=settings.DEFAULT_CURRENCY),
        )

    try:
        amount_dec = to_decimal(amount)
    except ValueError:
        return RoutingDecision(
            path_kind=None,
            fee_estimate=None,
            reason="Amount is malformed.",
            rejection=InvalidAmount("Amount is malformed.", amount=str(amount)),
        )
    if amount_dec <= 0:
        return RoutingDecision(
            path_kind=None,
            fee_estimate=None,
            reason="Amount must be greater than zero.",
            rejection=InvalidAmount("Amount must be greater than zero.", amount=str(amount_dec)),
        )

    threshold = threshold if threshold is not None else settings.ESCROW_THRESHOLD
    if amount_dec >= threshold:
        fees = compute_fees(amount_dec, tier, PathKind.ESCROW, gst_override=gst_override, schedule=schedule)
        return RoutingDecision(
            path_kind=PathKind.ESCROW,
            fee_estimate=fees,
            reason="Amount at or above the escrow threshold; escrow is mandatory.",
        )

    fees = compute_fees(amount_dec, tier, PathKind.DIRECT, gst_override=gst_override, schedule=schedule)
    required = quantize_money(amount_dec) + fees.total_fees
    available = balance.available if balance is not None else Decimal("0.00")
    if available < required:
        return RoutingDecision(
            path_kind=PathKind.DIRECT,
            fee_estimate=fees,
            reason="Wallet balance does not cover amount plus fees.",
            rejection=InsufficientBalance(required=required, available=available),
        )
    return RoutingDecision(
        path_kind=PathKind.DIRECT,
        fee_estimate=fees,
        reason="Amount below the escrow threshold; direct transfer.",
    )


def preview_transaction(
    payload: TransactionCreate,
    *,
    balance_provider: BalanceProvider,
    tier_provider: TierProvider,
) -> tuple[RoutingDecision, Tier, Balance]:
    """Return the routing decision a submission would get, persisting nothing."""

    tier = tier_provider.get_tier(payload.buyer_ref)
    balance = balance_provider.get_balance(payload.buyer_ref)
    decision = route(
        payload.amount,
        tier,
        balance,
        gst_override=payload.gst_amount,
        currency=payload.currency or get_settings().DEFAULT_CURRENCY,
    )
    return decision, tier, balance


def submit_transaction(
    repo: TransactionRepository,
    payload: TransactionCreate,
    *,
    balance_provider: BalanceProvider,
    tier_provider: TierProvider,
    idempotency_key: str,
    actor: str,
) -> tuple[Transaction, bool]:
    """Route and persist a transaction with its derived settlement record.

    Returns the transaction and whether it was newly created; a repeated
    idempotency key returns the original settlement untouched.
    """

    existing = repo.get_by_idempotency_key(idempotency_key)
    if existing is not None:
        logger.info("Idempotent transaction reused", extra={"transaction_id": existing.id})
        return existing, False

    decision, tier, _balance = preview_transaction(
        payload, balance_provider=balance_provider, tier_provider=tier_provider
    )
    if not decision.accepted:
        logger.info(
            "Transaction rejected by router",
            extra={"code": decision.rejection.code, "buyer_ref": payload.buyer_ref},
        )
    decision.raise_for_rejection()
    assert decision.path_kind is not None and decision.fee_estimate is not None

    db = repo.db
    transaction = Transaction(
        amount=quantize_money(payload.amount),
        currency=payload.currency or get_settings().DEFAULT_CURRENCY,
        buyer_ref=payload.buyer_ref,
        seller_ref=payload.seller_ref,
        path_kind=decision.path_kind,
        idempotency_key=idempotency_key,
    )
    try:
        repo.add(transaction)
        settlement: DirectTransfer | Escrow
        if decision.path_kind == PathKind.ESCROW:
            settlement = escrow_service.create_escrow(
                db,
                transaction,
                tier=tier,
                fees=decision.fee_estimate,
                milestone_specs=payload.milestones or [],
            )
        else:
            if payload.milestones:
                logger.info(
                    "Milestones ignored for direct transfer",
                    extra={"transaction_id": transaction.id, "count": len(payload.milestones)},
                )
            settlement = transfer_service.create_transfer(
                db, transaction, tier=tier, fees=decision.fee_estimate
            )
        log_audit(
            db,
            actor=actor,
            action="TRANSACTION_ROUTED",
            entity="Transaction",
            entity_id=transaction.id,
            data={
                "path_kind": decision.path_kind.value,
                "amount": str(transaction.amount),
                "currency": transaction.currency,
                "tier": tier.value,
                "settlement_id": settlement.id,
                "buyer_ref": transaction.buyer_ref,
                "seller_ref": transaction.seller_ref,
                **decision.fee_estimate.as_dict(),
            },
        )
        repo.save(transaction)
    except IntegrityError:
        repo.db.rollback()
        existing = repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info("Idempotent transaction reused after race", extra={"transaction_id": existing.id})
            return existing, False
        raise

    logger.info(
        "Transaction routed",
        extra={"transaction_id": transaction.id, "path_kind": decision.path_kind.value},
    )
    return transaction, True


__all__ = ["RoutingDecision", "route", "preview_transaction", "submit_transaction"]
