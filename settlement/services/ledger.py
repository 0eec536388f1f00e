"""Boundary to wallets, the payment ledger and subscription tiers.

The settlement core never moves money itself: it asks a ``LedgerExecutor``
to debit and credit wallets, keyed by idempotency keys so retries are safe.
``DatabaseWalletLedger`` is the default adapter, storing balances and
entries next to the settlement tables; production deployments can inject a
PSP-backed executor through the same protocol.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Protocol, TypeVar

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from settlement.db import get_db
from settlement.models import EntryDirection, LedgerEntry, Tier, UserAccount, Wallet
from settlement.services.idempotency import get_existing_by_key
from settlement.utils.errors import ExternalLedgerError, ProcessingTimeout
from settlement.utils.money import quantize_money

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class Balance:
    available: Decimal
    pending: Decimal

    @property
    def total(self) -> Decimal:
        return self.available + self.pending


@dataclass(frozen=True)
class LedgerReceipt:
    entry_id: int
    wallet_ref: str
    direction: EntryDirection
    amount: Decimal
    idempotency_key: str
    replayed: bool = False


class LedgerFailure(Exception):
    """Raised by ledger adapters when a debit or credit is refused."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class BalanceProvider(Protocol):
    def get_balance(self, wallet_ref: str) -> Balance: ...


class LedgerExecutor(Protocol):
    async def debit(
        self, wallet_ref: str, amount: Decimal, *, idempotency_key: str, currency: str | None = None
    ) -> LedgerReceipt: ...

    async def credit(
        self, wallet_ref: str, amount: Decimal, *, idempotency_key: str, currency: str | None = None
    ) -> LedgerReceipt: ...


class TierProvider(Protocol):
    def get_tier(self, user_ref: str) -> Tier: ...


async def call_ledger(awaitable: Awaitable[R], *, timeout: float, operation: str, **details: Any) -> R:
    """Await a ledger call with a bound, translating failures to typed errors."""

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning(
            "Ledger call timed out",
            extra={"operation": operation, "timeout_seconds": timeout, **details},
        )
        raise ProcessingTimeout(
            f"Ledger {operation} did not answer within {timeout}s.",
            operation=operation,
            timeout_seconds=timeout,
            **details,
        ) from exc
    except LedgerFailure as exc:
        logger.warning(
            "Ledger call failed",
            extra={"operation": operation, "ledger_code": exc.code, **details},
        )
        raise ExternalLedgerError(str(exc), operation=operation, ledger_code=exc.code, **details) from exc


class DatabaseWalletLedger:
    """Wallet balances and ledger entries stored in the settlement database."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _wallet(self, wallet_ref: str) -> Wallet | None:
        return self.db.scalars(select(Wallet).where(Wallet.ref == wallet_ref)).first()

    def get_balance(self, wallet_ref: str) -> Balance:
        wallet = self._wallet(wallet_ref)
        if wallet is None:
            return Balance(available=Decimal("0.00"), pending=Decimal("0.00"))
        return Balance(available=wallet.available, pending=wallet.pending)

    async def debit(
        self, wallet_ref: str, amount: Decimal, *, idempotency_key: str, currency: str | None = None
    ) -> LedgerReceipt:
        return self._apply(EntryDirection.DEBIT, wallet_ref, amount, idempotency_key, currency)

    async def credit(
        self, wallet_ref: str, amount: Decimal, *, idempotency_key: str, currency: str | None = None
    ) -> LedgerReceipt:
        return self._apply(EntryDirection.CREDIT, wallet_ref, amount, idempotency_key, currency)

    def _replay(self, entry: LedgerEntry, direction: EntryDirection, amount: Decimal) -> LedgerReceipt:
        if entry.direction != direction or entry.amount != amount:
            raise LedgerFailure(
                "IDEMPOTENCY_CONFLICT",
                f"Key {entry.idempotency_key} was already used for a different entry.",
            )
        logger.info(
            "Ledger entry replayed",
            extra={"entry_id": entry.id, "idempotency_key": entry.idempotency_key},
        )
        return LedgerReceipt(
            entry_id=entry.id,
            wallet_ref=entry.wallet.ref,
            direction=entry.direction,
            amount=entry.amount,
            idempotency_key=entry.idempotency_key,
            replayed=True,
        )

    def _apply(
        self,
        direction: EntryDirection,
        wallet_ref: str,
        amount: Decimal,
        idempotency_key: str,
        currency: str | None,
    ) -> LedgerReceipt:
        amount = quantize_money(amount)
        if amount <= 0:
            raise LedgerFailure("INVALID_AMOUNT", "Ledger amounts must be positive.")

        existing = get_existing_by_key(self.db, LedgerEntry, idempotency_key)
        if existing is not None:
            return self._replay(existing, direction, amount)

        wallet = self._wallet(wallet_ref)
        if wallet is None:
            if direction == EntryDirection.DEBIT or currency is None:
                raise LedgerFailure("WALLET_NOT_FOUND", f"Wallet {wallet_ref} does not exist.")
            wallet = Wallet(ref=wallet_ref, currency=currency, available=Decimal("0.00"), pending=Decimal("0.00"))
            self.db.add(wallet)
        elif currency is not None and wallet.currency != currency:
            raise LedgerFailure(
                "CURRENCY_MISMATCH",
                f"Wallet {wallet_ref} holds {wallet.currency}, {currency} requested.",
            )

        if direction == EntryDirection.DEBIT:
            if wallet.available < amount:
                raise LedgerFailure(
                    "INSUFFICIENT_FUNDS",
                    f"Wallet {wallet_ref} holds {wallet.available}, {amount} requested.",
                )
            wallet.available = wallet.available - amount
        else:
            wallet.available = (wallet.available or Decimal("0.00")) + amount

        entry = LedgerEntry(
            wallet=wallet,
            direction=direction,
            amount=amount,
            idempotency_key=idempotency_key,
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except (IntegrityError, StaleDataError) as exc:
            # Another writer won the race on the key or the wallet row.
            self.db.rollback()
            existing = get_existing_by_key(self.db, LedgerEntry, idempotency_key)
            if existing is not None:
                return self._replay(existing, direction, amount)
            raise LedgerFailure("LEDGER_CONFLICT", "Wallet changed concurrently; retry.") from exc

        logger.info(
            "Ledger entry applied",
            extra={"entry_id": entry.id, "direction": direction.value, "amount": str(amount)},
        )
        return LedgerReceipt(
            entry_id=entry.id,
            wallet_ref=wallet.ref,
            direction=direction,
            amount=amount,
            idempotency_key=idempotency_key,
        )


class DatabaseTierProvider:
    """Tier lookup from user accounts; unknown users are on the free tier."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_tier(self, user_ref: str) -> Tier:
        account = self.db.scalars(select(UserAccount).where(UserAccount.ref == user_ref)).first()
        return account.tier if account is not None else Tier.FREE


def get_ledger(db: Session = Depends(get_db)) -> DatabaseWalletLedger:
    return DatabaseWalletLedger(db)


def get_tier_provider(db: Session = Depends(get_db)) -> DatabaseTierProvider:
    return DatabaseTierProvider(db)


__all__ = [
    "Balance",
    "LedgerReceipt",
    "LedgerFailure",
    "BalanceProvider",
    "LedgerExecutor",
    "TierProvider",
    "call_ledger",
    "DatabaseWalletLedger",
    "DatabaseTierProvider",
    "get_ledger",
    "get_tier_provider",
]
