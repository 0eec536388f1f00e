"""Escrow lifecycle: creation with milestone allocation, funding and release."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy.orm import Session

from settlement.config import Settings, get_settings
from settlement.models import Escrow, EscrowStatus, Milestone, MilestoneStatus, Tier, Transaction
from settlement.repositories import EscrowRepository
from settlement.schemas.milestone import MilestoneSpec
from settlement.services import events
from settlement.services.alerts import MANUAL_INTERVENTION, raise_alert
from settlement.services.fees import Fees
from settlement.services.idempotency import operation_key
from settlement.services.ledger import LedgerExecutor, call_ledger
from settlement.services.state_machines import escrow_transition
from settlement.utils.audit import log_audit
from settlement.utils.errors import (
    EscrowNotReleasable,
    ExternalLedgerError,
    MilestoneAllocationError,
    ProcessingTimeout,
)
from settlement.utils.money import CENT, HUNDRED, quantize_money, quantize_percentage, share_of
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    name: str
    description: str | None
    amount: Decimal
    percentage: Decimal
    required_confirmations: int
    due_date: datetime | None = None


def allocate_milestones(
    total: Decimal,
    specs: Sequence[MilestoneSpec],
    *,
    tolerance: Decimal | None = None,
) -> list[Allocation]:
    """Resolve milestone amounts and percentages against ``total``.

    Amounts must sum to ``total`` exactly and percentages to 100 within
    ``tolerance`` points. Percentage-only milestones are rounded down to the
    cent and the last of them absorbs the remainder. Without specs a single
    milestone covers the whole escrow.
    """

    total = quantize_money(total)
    tolerance = tolerance if tolerance is not None else get_settings().PERCENTAGE_TOLERANCE
    if not specs:
        specs = [MilestoneSpec(name="Full delivery", percentage=HUNDRED)]

    amounts: list[Decimal] = []
    derived: list[int] = []
    for position, spec in enumerate(specs):
        if spec.amount is not None:
            amount = quantize_money(spec.amount)
            if spec.percentage is not None:
                implied = amount / total * HUNDRED
                if abs(implied - spec.percentage) > tolerance:
                    raise MilestoneAllocationError(
                        "Milestone amount and percentage disagree.",
                        milestone=spec.name,
                        amount=str(amount),
                        percentage=str(spec.percentage),
                        implied_percentage=str(quantize_percentage(implied)),
                    )
        else:
            amount = share_of(total, spec.percentage)
            derived.append(position)
        amounts.append(amount)

    remainder = total - sum(amounts, Decimal("0.00"))
    if derived and Decimal("0") < remainder <= CENT * len(derived):
        amounts[derived[-1]] += remainder
        remainder = Decimal("0.00")

    if remainder != 0:
        raise MilestoneAllocationError(
            "Milestone amounts must sum to the escrow total.",
            expected=str(total),
            actual=str(total - remainder),
        )

    percentages = [
        quantize_percentage(spec.percentage) if spec.percentage is not None else quantize_percentage(amount / total * HUNDRED)
        for spec, amount in zip(specs, amounts)
    ]
    if any(amount <= 0 for amount in amounts) or any(pct <= 0 for pct in percentages):
        raise MilestoneAllocationError("Every milestone must carry a positive amount.")
    percentage_sum = sum(percentages, Decimal("0"))
    if abs(percentage_sum - HUNDRED) > tolerance:
        raise MilestoneAllocationError(
            "Milestone percentages must sum to 100.",
            actual=str(percentage_sum),
            tolerance=str(tolerance),
        )

    return [
        Allocation(
            name=spec.name,
            description=spec.description,
            amount=amount,
            percentage=percentage,
            required_confirmations=spec.required_confirmations,
            due_date=spec.due_date,
        )
        for spec, amount, percentage in zip(specs, amounts, percentages)
    ]


def create_escrow(
    db: Session,
    transaction: Transaction,
    *,
    tier: Tier,
    fees: Fees,
    milestone_specs: Sequence[MilestoneSpec],
) -> Escrow:
    """Stage an escrow in PENDING with its milestones; the caller commits."""

    allocations = allocate_milestones(transaction.amount, milestone_specs)
    escrow = Escrow(
        transaction_id=transaction.id,
        buyer_ref=transaction.buyer_ref,
        seller_ref=transaction.seller_ref,
        total_amount=transaction.amount,
        currency=transaction.currency,
        tier=tier,
        transaction_fee=fees.transaction_fee,
        gst_amount=fees.gst_amount,
        total_fees=fees.total_fees,
        net_amount=fees.net_amount,
        status=EscrowStatus.PENDING,
        milestones=[
            Milestone(
                idx=position,
                name=allocation.name,
                description=allocation.description,
                amount=allocation.amount,
                percentage=allocation.percentage,
                required_confirmations=allocation.required_confirmations,
                due_date=allocation.due_date,
                status=MilestoneStatus.PENDING,
                current_confirmations=0,
                evidence=[],
            )
            for position, allocation in enumerate(allocations, start=1)
        ],
    )
    db.add(escrow)
    db.flush()
    events.emit_event(
        db,
        aggregate_type="Escrow",
        aggregate_id=escrow.id,
        kind=events.ESCROW_CREATED,
        to_status=EscrowStatus.PENDING,
        data={"transaction_id": transaction.id, "milestones": len(allocations)},
    )
    logger.info(
        "Escrow created",
        extra={"escrow_id": escrow.id, "transaction_id": transaction.id, "milestones": len(allocations)},
    )
    return escrow


def get_escrow(repo: EscrowRepository, escrow_id: int) -> Escrow:
    return repo.get(escrow_id)


async def fund_escrow(
    repo: EscrowRepository,
    escrow_id: int,
    ledger: LedgerExecutor,
    *,
    actor: str,
    settings: Settings | None = None,
) -> Escrow:
    """Debit the buyer for the escrow total and activate the escrow.

    A timed-out or refused debit leaves the escrow PENDING; the debit key is
    stable so a retry never charges the buyer twice.
    """

    settings = settings or get_settings()
    escrow = repo.get(escrow_id, for_update=True)
    target = escrow_transition(escrow.status, "fund", escrow_id=escrow.id)

    receipt = await call_ledger(
        ledger.debit(
            escrow.buyer_ref,
            escrow.total_amount,
            idempotency_key=operation_key("escrow", escrow.id, "fund"),
            currency=escrow.currency,
        ),
        timeout=settings.LEDGER_TIMEOUT_SECONDS,
        operation="escrow_fund",
        escrow_id=escrow.id,
    )

    previous = escrow.status
    escrow.status = target
    escrow.funded_at = utcnow()
    events.emit_event(
        repo.db,
        aggregate_type="Escrow",
        aggregate_id=escrow.id,
        kind=events.ESCROW_FUNDED,
        from_status=previous,
        to_status=target,
        data={"amount": str(escrow.total_amount), "ledger_entry_id": receipt.entry_id},
    )
    log_audit(
        repo.db,
        actor=actor,
        action="ESCROW_FUNDED",
        entity="Escrow",
        entity_id=escrow.id,
        data={"amount": str(escrow.total_amount), "buyer_ref": escrow.buyer_ref, "replayed": receipt.replayed},
    )
    repo.save(escrow)
    logger.info("Escrow funded", extra={"escrow_id": escrow.id, "amount": str(escrow.total_amount)})
    return escrow


def _outstanding_milestones(escrow: Escrow) -> list[int]:
    return [m.id for m in escrow.milestones if m.status != MilestoneStatus.APPROVED]


async def release_escrow(
    repo: EscrowRepository,
    escrow_id: int,
    ledger: LedgerExecutor,
    *,
    actor: str,
    settings: Settings | None = None,
) -> Escrow:
    """Pay the seller the net amount once every milestone is approved.

    Ledger failures count against ``PROCESSING_MAX_ATTEMPTS``; when the
    budget is spent the escrow is marked FAILED and an alert is raised.
    """

    settings = settings or get_settings()
    escrow = repo.get(escrow_id, for_update=True)
    target = escrow_transition(escrow.status, "release", escrow_id=escrow.id)

    outstanding = _outstanding_milestones(escrow)
    if outstanding:
        logger.warning(
            "Escrow release refused",
            extra={"escrow_id": escrow.id, "outstanding": outstanding},
        )
        raise EscrowNotReleasable(escrow_id=escrow.id, outstanding=outstanding)

    # ledger steps applied during this attempt
    completed: list[str] = []
    try:
        if escrow.net_amount > 0:
            await call_ledger(
                ledger.credit(
                    escrow.seller_ref,
                    escrow.net_amount,
                    idempotency_key=operation_key("escrow", escrow.id, "release"),
                    currency=escrow.currency,
                ),
                timeout=settings.LEDGER_TIMEOUT_SECONDS,
                operation="escrow_release",
                escrow_id=escrow.id,
            )
            completed.append("seller_credit")
        if settings.PLATFORM_WALLET_REF and escrow.total_fees > 0:
            await call_ledger(
                ledger.credit(
                    settings.PLATFORM_WALLET_REF,
                    escrow.total_fees,
                    idempotency_key=operation_key("escrow", escrow.id, "fees"),
                    currency=escrow.currency,
                ),
                timeout=settings.LEDGER_TIMEOUT_SECONDS,
                operation="escrow_fee_collection",
                escrow_id=escrow.id,
            )
            completed.append("fee_collection")
    except (ProcessingTimeout, ExternalLedgerError) as exc:
        _record_release_failure(repo, escrow, exc, completed_steps=completed, settings=settings)
        raise

    previous = escrow.status
    escrow.status = target
    escrow.released_at = utcnow()
    escrow.last_error = None
    events.emit_event(
        repo.db,
        aggregate_type="Escrow",
        aggregate_id=escrow.id,
        kind=events.ESCROW_RELEASED,
        from_status=previous,
        to_status=target,
        data={"net_amount": str(escrow.net_amount), "total_fees": str(escrow.total_fees)},
    )
    log_audit(
        repo.db,
        actor=actor,
        action="ESCROW_RELEASED",
        entity="Escrow",
        entity_id=escrow.id,
        data={"net_amount": str(escrow.net_amount), "seller_ref": escrow.seller_ref},
    )
    repo.save(escrow)
    logger.info("Escrow released", extra={"escrow_id": escrow.id, "net_amount": str(escrow.net_amount)})
    return escrow


def _record_release_failure(
    repo: EscrowRepository,
    escrow: Escrow,
    exc: ProcessingTimeout | ExternalLedgerError,
    *,
    completed_steps: list[str],
    settings: Settings,
) -> None:
    """Count a failed release; the seller may already be paid when fees fail."""

    # the ledger may have committed the session; reload before writing
    repo.db.refresh(escrow)
    escrow.release_attempts += 1
    escrow.last_error = exc.code
    if escrow.release_attempts >= settings.PROCESSING_MAX_ATTEMPTS:
        previous = escrow.status
        escrow.status = escrow_transition(escrow.status, "fail", escrow_id=escrow.id)
        events.emit_event(
            repo.db,
            aggregate_type="Escrow",
            aggregate_id=escrow.id,
            kind=events.ESCROW_FAILED,
            from_status=previous,
            to_status=escrow.status,
            data={"attempts": escrow.release_attempts, "error": exc.code, "completed_steps": completed_steps},
        )
        raise_alert(
            repo.db,
            alert_type=MANUAL_INTERVENTION,
            message="Escrow release exhausted its retry budget.",
            entity="Escrow",
            entity_id=escrow.id,
            payload={
                "attempts": escrow.release_attempts,
                "error": exc.code,
                "completed_steps": completed_steps,
                "seller_paid": "seller_credit" in completed_steps,
                **exc.details,
            },
        )
    log_audit(
        repo.db,
        actor="system",
        action="ESCROW_RELEASE_FAILED",
        entity="Escrow",
        entity_id=escrow.id,
        data={
            "attempts": escrow.release_attempts,
            "error": exc.code,
            "status": escrow.status.value,
            "completed_steps": completed_steps,
        },
    )
    repo.save(escrow)


__all__ = [
    "Allocation",
    "allocate_milestones",
    "create_escrow",
    "get_escrow",
    "fund_escrow",
    "release_escrow",
]
