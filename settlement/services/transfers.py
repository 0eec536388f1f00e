"""Direct transfers: immediate wallet-to-wallet settlement below the escrow threshold."""
from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.config import Settings, get_settings
from settlement.db import session_scope
from settlement.models import DirectTransfer, Tier, Transaction, TransferStatus
from settlement.repositories import TransferRepository
from settlement.services import events
from settlement.services.alerts import MANUAL_INTERVENTION, raise_alert
from settlement.services.fees import Fees
from settlement.services.idempotency import operation_key
from settlement.services.ledger import BalanceProvider, LedgerExecutor, call_ledger
from settlement.services.state_machines import transfer_transition
from settlement.utils.audit import log_audit
from settlement.utils.errors import (
    ExternalLedgerError,
    InsufficientBalance,
    InvalidAmount,
    ProcessingTimeout,
)
from settlement.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


def create_transfer(db: Session, transaction: Transaction, *, tier: Tier, fees: Fees) -> DirectTransfer:
    """Stage a transfer in VALIDATION; the caller commits."""

    threshold = get_settings().ESCROW_THRESHOLD
    if transaction.amount >= threshold:
        raise InvalidAmount(
            "Amounts at or above the escrow threshold must settle through escrow.",
            amount=str(transaction.amount),
            threshold=str(threshold),
        )
    transfer = DirectTransfer(
        transaction_id=transaction.id,
        buyer_ref=transaction.buyer_ref,
        seller_ref=transaction.seller_ref,
        amount=transaction.amount,
        currency=transaction.currency,
        tier=tier,
        transaction_fee=fees.transaction_fee,
        gst_amount=fees.gst_amount,
        total_fees=fees.total_fees,
        net_amount=fees.net_amount,
        status=TransferStatus.VALIDATION,
        attempts=0,
    )
    db.add(transfer)
    db.flush()
    logger.info("Direct transfer created", extra={"transfer_id": transfer.id, "transaction_id": transaction.id})
    return transfer


def get_transfer(repo: TransferRepository, transfer_id: int) -> DirectTransfer:
    return repo.get(transfer_id)


def confirm_transfer(
    repo: TransferRepository,
    transfer_id: int,
    balances: BalanceProvider,
    *,
    actor: str,
) -> DirectTransfer:
    """Re-check the buyer's balance and move the transfer to CONFIRMATION."""

    transfer = repo.get(transfer_id, for_update=True)
    target = transfer_transition(transfer.status, "confirm", transfer_id=transfer.id)
    balance = balances.get_balance(transfer.buyer_ref)
    required = transfer.amount + transfer.total_fees
    if balance.available < required:
        logger.info(
            "Transfer confirmation refused",
            extra={"transfer_id": transfer.id, "required": str(required), "available": str(balance.available)},
        )
        raise InsufficientBalance(required=required, available=balance.available)

    transfer.status = target
    log_audit(
        repo.db,
        actor=actor,
        action="TRANSFER_CONFIRMED",
        entity="DirectTransfer",
        entity_id=transfer.id,
        data={"amount": str(transfer.amount), "buyer_ref": transfer.buyer_ref},
    )
    repo.save(transfer)
    return transfer


async def process_transfer(
    repo: TransferRepository,
    transfer_id: int,
    ledger: LedgerExecutor,
    *,
    actor: str,
    settings: Settings | None = None,
) -> DirectTransfer:
    """Move money for a confirmed transfer.

    PROCESSING is committed before the first ledger call so a crash leaves a
    visible trace. Ledger steps use keys derived from the transfer id, so a
    retry after a timeout replays completed steps instead of repeating them.
    A failed attempt returns the transfer to CONFIRMATION until
    ``TRANSFER_MAX_ATTEMPTS`` is spent, after which it is FAILED.
    """

    settings = settings or get_settings()
    transfer = repo.get(transfer_id, for_update=True)
    transfer.status = transfer_transition(transfer.status, "process", transfer_id=transfer.id)
    transfer.attempts += 1
    transfer.processing_started_at = utcnow()
    repo.save(transfer)
    logger.info("Transfer processing", extra={"transfer_id": transfer.id, "attempt": transfer.attempts})

    try:
        await call_ledger(
            ledger.debit(
                transfer.buyer_ref,
                transfer.amount,
                idempotency_key=operation_key("transfer", transfer.id, "debit"),
                currency=transfer.currency,
            ),
            timeout=settings.LEDGER_TIMEOUT_SECONDS,
            operation="transfer_debit",
            transfer_id=transfer.id,
        )
        if transfer.net_amount > 0:
            await call_ledger(
                ledger.credit(
                    transfer.seller_ref,
                    transfer.net_amount,
                    idempotency_key=operation_key("transfer", transfer.id, "credit"),
                    currency=transfer.currency,
                ),
                timeout=settings.LEDGER_TIMEOUT_SECONDS,
                operation="transfer_credit",
                transfer_id=transfer.id,
            )
        if settings.PLATFORM_WALLET_REF and transfer.total_fees > 0:
            await call_ledger(
                ledger.credit(
                    settings.PLATFORM_WALLET_REF,
                    transfer.total_fees,
                    idempotency_key=operation_key("transfer", transfer.id, "fees"),
                    currency=transfer.currency,
                ),
                timeout=settings.LEDGER_TIMEOUT_SECONDS,
                operation="transfer_fee_collection",
                transfer_id=transfer.id,
            )
    except (ProcessingTimeout, ExternalLedgerError) as exc:
        repo.db.refresh(transfer)
        _record_failed_attempt(repo, transfer, error=exc.code, details=exc.details, settings=settings)
        repo.save(transfer)
        raise

    repo.db.refresh(transfer)
    previous = transfer.status
    transfer.status = transfer_transition(transfer.status, "succeed", transfer_id=transfer.id)
    transfer.completed_at = utcnow()
    transfer.last_error = None
    events.emit_event(
        repo.db,
        aggregate_type="DirectTransfer",
        aggregate_id=transfer.id,
        kind=events.TRANSFER_COMPLETED,
        from_status=previous,
        to_status=transfer.status,
        data={"amount": str(transfer.amount), "net_amount": str(transfer.net_amount), "attempts": transfer.attempts},
    )
    log_audit(
        repo.db,
        actor=actor,
        action="TRANSFER_COMPLETED",
        entity="DirectTransfer",
        entity_id=transfer.id,
        data={
            "amount": str(transfer.amount),
            "net_amount": str(transfer.net_amount),
            "buyer_ref": transfer.buyer_ref,
            "seller_ref": transfer.seller_ref,
        },
    )
    repo.save(transfer)
    logger.info("Transfer completed", extra={"transfer_id": transfer.id, "attempts": transfer.attempts})
    return transfer


def _record_failed_attempt(
    repo: TransferRepository,
    transfer: DirectTransfer,
    *,
    error: str,
    details: dict,
    settings: Settings,
) -> None:
    """Send a PROCESSING transfer back for retry, or fail it once the budget is spent."""

    transfer.last_error = error
    previous = transfer.status
    if transfer.attempts >= settings.TRANSFER_MAX_ATTEMPTS:
        transfer.status = transfer_transition(transfer.status, "fail", transfer_id=transfer.id)
        events.emit_event(
            repo.db,
            aggregate_type="DirectTransfer",
            aggregate_id=transfer.id,
            kind=events.TRANSFER_FAILED,
            from_status=previous,
            to_status=transfer.status,
            data={"attempts": transfer.attempts, "error": error},
        )
        raise_alert(
            repo.db,
            alert_type=MANUAL_INTERVENTION,
            message="Direct transfer exhausted its retry budget.",
            entity="DirectTransfer",
            entity_id=transfer.id,
            payload={"attempts": transfer.attempts, "error": error, **details},
        )
    else:
        transfer.status = transfer_transition(transfer.status, "retry", transfer_id=transfer.id)
    log_audit(
        repo.db,
        actor="system",
        action="TRANSFER_ATTEMPT_FAILED",
        entity="DirectTransfer",
        entity_id=transfer.id,
        data={"attempts": transfer.attempts, "error": error, "status": transfer.status.value},
    )
    logger.warning(
        "Transfer attempt failed",
        extra={"transfer_id": transfer.id, "attempts": transfer.attempts, "error": error, "status": transfer.status.value},
    )


def cancel_transfer(
    repo: TransferRepository,
    transfer_id: int,
    *,
    actor: str,
    reason: str | None = None,
) -> DirectTransfer:
    transfer = repo.get(transfer_id, for_update=True)
    previous = transfer.status
    transfer.status = transfer_transition(transfer.status, "cancel", transfer_id=transfer.id)
    transfer.last_error = reason
    events.emit_event(
        repo.db,
        aggregate_type="DirectTransfer",
        aggregate_id=transfer.id,
        kind=events.TRANSFER_CANCELLED,
        from_status=previous,
        to_status=transfer.status,
        data={"reason": reason},
    )
    log_audit(
        repo.db,
        actor=actor,
        action="TRANSFER_CANCELLED",
        entity="DirectTransfer",
        entity_id=transfer.id,
        data={"reason": reason},
    )
    repo.save(transfer)
    return transfer


def escalate_stuck_transfers_once(
    db_session: Session | None = None,
    *,
    older_than_minutes: int | None = None,
    settings: Settings | None = None,
) -> int:
    """Release transfers left in PROCESSING by a crashed worker.

    Each is returned to CONFIRMATION for another attempt, or failed with an
    alert when its retry budget is spent. Returns how many were handled.
    """

    settings = settings or get_settings()
    minutes = older_than_minutes if older_than_minutes is not None else settings.STUCK_PROCESSING_MINUTES
    cutoff = utcnow() - timedelta(minutes=minutes)
    handled = 0
    with session_scope(db_session) as session:
        repo = TransferRepository(session)
        stmt = select(DirectTransfer).where(DirectTransfer.status == TransferStatus.PROCESSING)
        for transfer in session.scalars(stmt).all():
            started = as_utc(transfer.processing_started_at)
            if started is not None and started > cutoff:
                continue
            _record_failed_attempt(
                repo,
                transfer,
                error="STUCK_PROCESSING",
                details={"stuck_since": started.isoformat() if started else None},
                settings=settings,
            )
            handled += 1
        if handled:
            repo.save()
    if handled:
        logger.info("Stuck transfers escalated", extra={"count": handled})
    return handled


__all__ = [
    "create_transfer",
    "get_transfer",
    "confirm_transfer",
    "process_transfer",
    "cancel_transfer",
    "escalate_stuck_transfers_once",
]
