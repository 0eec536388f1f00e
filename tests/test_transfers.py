import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.config import get_settings
from settlement.models import Alert, DirectTransfer, DomainEvent, LedgerEntry, PathKind, Tier, Transaction, TransferStatus
from settlement.services import transfers as transfer_service
from settlement.services.fees import compute_fees
from settlement.services.ledger import LedgerFailure
from settlement.utils.errors import (
    ExternalLedgerError,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransferState,
    ProcessingTimeout,
)
from settlement.utils.time import utcnow


class LostReplyLedger:
    """Applies the first debit, then hangs as if the reply never arrived."""

    def __init__(self, inner):
        self.inner = inner
        self.debit_calls = 0

    async def debit(self, wallet_ref, amount, *, idempotency_key, currency=None):
        self.debit_calls += 1
        receipt = await self.inner.debit(wallet_ref, amount, idempotency_key=idempotency_key, currency=currency)
        if self.debit_calls == 1:
            await asyncio.sleep(1)
        return receipt

    async def credit(self, wallet_ref, amount, *, idempotency_key, currency=None):
        return await self.inner.credit(wallet_ref, amount, idempotency_key=idempotency_key, currency=currency)


class DownLedger:
    async def debit(self, wallet_ref, amount, *, idempotency_key, currency=None):
        raise LedgerFailure("PSP_UNAVAILABLE", "Ledger is down.")

    async def credit(self, wallet_ref, amount, *, idempotency_key, currency=None):
        raise LedgerFailure("PSP_UNAVAILABLE", "Ledger is down.")


def _transfer_for(db_session, transaction) -> DirectTransfer:
    return db_session.scalars(select(DirectTransfer).where(DirectTransfer.transaction_id == transaction.id)).one()


@pytest.fixture
def confirmed_transfer(db_session, make_wallet, submit, transfer_repo, ledger):
    make_wallet("buyer-1", available="200000")
    transfer = _transfer_for(db_session, submit("150000"))
    return transfer_service.confirm_transfer(transfer_repo, transfer.id, ledger, actor="buyer")


@pytest.mark.anyio
async def test_direct_transfer_happy_path(confirmed_transfer, transfer_repo, ledger, db_session):
    settings = get_settings().model_copy(update={"PLATFORM_WALLET_REF": "platform"})

    done = await transfer_service.process_transfer(
        transfer_repo, confirmed_transfer.id, ledger, actor="buyer", settings=settings
    )

    assert done.status == TransferStatus.COMPLETE
    assert done.attempts == 1
    assert done.completed_at is not None
    assert ledger.get_balance("buyer-1").available == Decimal("50000.00")
    assert ledger.get_balance("seller-1").available == Decimal("145575.00")
    assert ledger.get_balance("platform").available == Decimal("4425.00")
    event = db_session.scalars(select(DomainEvent).where(DomainEvent.kind == "TransferCompleted")).one()
    assert event.from_status == "PROCESSING"
    assert event.to_status == "COMPLETE"


@pytest.mark.anyio
async def test_timeout_then_retry_debits_once(confirmed_transfer, transfer_repo, ledger, db_session):
    flaky = LostReplyLedger(ledger)
    settings = get_settings().model_copy(update={"LEDGER_TIMEOUT_SECONDS": 0.05})

    with pytest.raises(ProcessingTimeout):
        await transfer_service.process_transfer(
            transfer_repo, confirmed_transfer.id, flaky, actor="buyer", settings=settings
        )
    assert confirmed_transfer.status == TransferStatus.CONFIRMATION
    assert confirmed_transfer.attempts == 1
    assert confirmed_transfer.last_error == "PROCESSING_TIMEOUT"

    done = await transfer_service.process_transfer(
        transfer_repo, confirmed_transfer.id, flaky, actor="buyer", settings=settings
    )

    assert done.status == TransferStatus.COMPLETE
    assert done.attempts == 2
    assert flaky.debit_calls == 2
    debits = db_session.scalars(
        select(LedgerEntry).where(LedgerEntry.idempotency_key == f"transfer:{done.id}:debit")
    ).all()
    assert len(debits) == 1
    assert ledger.get_balance("buyer-1").available == Decimal("50000.00")
    assert ledger.get_balance("seller-1").available == Decimal("145575.00")


@pytest.mark.anyio
async def test_transfer_returns_to_confirmation_once_then_fails(confirmed_transfer, transfer_repo, db_session):
    with pytest.raises(ExternalLedgerError):
        await transfer_service.process_transfer(transfer_repo, confirmed_transfer.id, DownLedger(), actor="buyer")
    assert confirmed_transfer.status == TransferStatus.CONFIRMATION
    assert confirmed_transfer.attempts == 1
    assert not db_session.scalars(select(Alert)).all()

    with pytest.raises(ExternalLedgerError):
        await transfer_service.process_transfer(transfer_repo, confirmed_transfer.id, DownLedger(), actor="buyer")

    assert confirmed_transfer.status == TransferStatus.FAILED
    assert confirmed_transfer.attempts == 2
    alert = db_session.scalars(select(Alert).where(Alert.entity == "DirectTransfer")).one()
    assert alert.payload_json["ledger_code"] == "PSP_UNAVAILABLE"
    assert db_session.scalars(select(DomainEvent).where(DomainEvent.kind == "TransferFailed")).one()

    with pytest.raises(InvalidTransferState):
        await transfer_service.process_transfer(transfer_repo, confirmed_transfer.id, DownLedger(), actor="buyer")


@pytest.mark.anyio
async def test_unconfirmed_transfer_cannot_be_processed(db_session, make_wallet, submit, transfer_repo, ledger):
    make_wallet("buyer-1", available="200000")
    transfer = _transfer_for(db_session, submit("1000"))

    with pytest.raises(InvalidTransferState) as excinfo:
        await transfer_service.process_transfer(transfer_repo, transfer.id, ledger, actor="buyer")
    assert excinfo.value.details["current_state"] == "VALIDATION"
    assert transfer.attempts == 0


def test_confirmation_rechecks_balance(db_session, make_wallet, submit, transfer_repo, ledger):
    wallet = make_wallet("buyer-1", available="200000")
    transfer = _transfer_for(db_session, submit("150000"))
    wallet.available = Decimal("1000.00")
    db_session.commit()

    with pytest.raises(InsufficientBalance) as excinfo:
        transfer_service.confirm_transfer(transfer_repo, transfer.id, ledger, actor="buyer")

    assert excinfo.value.details["required"] == "154425.00"
    assert transfer.status == TransferStatus.VALIDATION


def test_cancel_before_processing(db_session, make_wallet, submit, transfer_repo):
    make_wallet("buyer-1", available="200000")
    transfer = _transfer_for(db_session, submit("1000"))

    cancelled = transfer_service.cancel_transfer(transfer_repo, transfer.id, actor="buyer", reason="Order withdrawn")

    assert cancelled.status == TransferStatus.CANCELLED
    assert cancelled.last_error == "Order withdrawn"
    assert db_session.scalars(select(DomainEvent).where(DomainEvent.kind == "TransferCancelled")).one()
    with pytest.raises(InvalidTransferState):
        transfer_service.cancel_transfer(transfer_repo, transfer.id, actor="buyer")


@pytest.mark.anyio
async def test_completed_transfer_cannot_be_cancelled(confirmed_transfer, transfer_repo, ledger):
    await transfer_service.process_transfer(transfer_repo, confirmed_transfer.id, ledger, actor="buyer")

    with pytest.raises(InvalidTransferState):
        transfer_service.cancel_transfer(transfer_repo, confirmed_transfer.id, actor="buyer")


def test_direct_path_rejects_threshold_amounts(db_session):
    transaction = Transaction(
        amount=Decimal("500000.00"),
        currency="INR",
        buyer_ref="buyer-1",
        seller_ref="seller-1",
        path_kind=PathKind.DIRECT,
    )
    fees = compute_fees(transaction.amount, Tier.FREE, PathKind.DIRECT)

    with pytest.raises(InvalidAmount):
        transfer_service.create_transfer(db_session, transaction, tier=Tier.FREE, fees=fees)


def test_stuck_transfers_are_escalated(db_session, make_wallet, submit, transfer_repo, ledger):
    make_wallet("buyer-1", available="500000")
    stale, exhausted, fresh = (
        transfer_service.confirm_transfer(
            transfer_repo, _transfer_for(db_session, submit(amount)).id, ledger, actor="buyer"
        )
        for amount in ("1000", "2000", "3000")
    )
    long_ago = utcnow() - timedelta(minutes=30)
    for transfer, attempts, started in ((stale, 1, long_ago), (exhausted, 2, long_ago), (fresh, 1, utcnow())):
        transfer.status = TransferStatus.PROCESSING
        transfer.attempts = attempts
        transfer.processing_started_at = started
    db_session.commit()

    handled = transfer_service.escalate_stuck_transfers_once(db_session)

    assert handled == 2
    assert stale.status == TransferStatus.CONFIRMATION
    assert stale.last_error == "STUCK_PROCESSING"
    assert exhausted.status == TransferStatus.FAILED
    assert fresh.status == TransferStatus.PROCESSING
    alert = db_session.scalars(select(Alert)).one()
    assert alert.entity_id == exhausted.id


@pytest.mark.anyio
async def test_transfer_budget_is_separate_from_escrow_release(confirmed_transfer, transfer_repo):
    settings = get_settings().model_copy(update={"TRANSFER_MAX_ATTEMPTS": 3, "PROCESSING_MAX_ATTEMPTS": 1})

    for attempt in (1, 2):
        with pytest.raises(ExternalLedgerError):
            await transfer_service.process_transfer(
                transfer_repo, confirmed_transfer.id, DownLedger(), actor="buyer", settings=settings
            )
        assert confirmed_transfer.status == TransferStatus.CONFIRMATION
        assert confirmed_transfer.attempts == attempt

    with pytest.raises(ExternalLedgerError):
        await transfer_service.process_transfer(
            transfer_repo, confirmed_transfer.id, DownLedger(), actor="buyer", settings=settings
        )
    assert confirmed_transfer.status == TransferStatus.FAILED


@pytest.mark.anyio
async def test_foreign_currency_wallet_is_never_debited(db_session, make_wallet, submit, transfer_repo, ledger):
    make_wallet("buyer-1", available="600000", currency="USD")
    transfer = _transfer_for(db_session, submit("150000"))
    transfer_service.confirm_transfer(transfer_repo, transfer.id, ledger, actor="buyer")

    with pytest.raises(ExternalLedgerError) as excinfo:
        await transfer_service.process_transfer(transfer_repo, transfer.id, ledger, actor="buyer")

    assert excinfo.value.details["ledger_code"] == "CURRENCY_MISMATCH"
    assert transfer.status == TransferStatus.CONFIRMATION
    assert ledger.get_balance("buyer-1").available == Decimal("600000.00")
    assert not db_session.scalars(select(LedgerEntry)).all()
