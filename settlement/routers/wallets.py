"""Wallet endpoints backed by the database ledger."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.config import get_settings
from settlement.db import get_db
from settlement.models import Wallet
from settlement.schemas.wallet import BalanceRead, WalletCreate, WalletRead
from settlement.security import Principal, ensure_party, require_role
from settlement.services.idempotency import operation_key
from settlement.services.ledger import DatabaseWalletLedger, call_ledger, get_ledger
from settlement.utils.audit import log_audit
from settlement.utils.errors import error_response

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.post("", response_model=WalletRead, status_code=status.HTTP_201_CREATED)
async def create_wallet(
    payload: WalletCreate,
    db: Session = Depends(get_db),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    principal: Principal = Depends(require_role({"admin"})),
) -> Wallet:
    """Open a wallet, crediting ``opening_balance`` through the ledger."""

    wallet = Wallet(ref=payload.ref, currency=payload.currency)
    db.add(wallet)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response("WALLET_EXISTS", "A wallet with this ref already exists."),
        ) from exc
    log_audit(
        db,
        actor=principal.actor,
        action="CREATE_WALLET",
        entity="Wallet",
        entity_id=wallet.id,
        data={"wallet_ref": wallet.ref, "opening_balance": str(payload.opening_balance)},
    )
    db.commit()

    if payload.opening_balance > 0:
        await call_ledger(
            ledger.credit(
                wallet.ref,
                payload.opening_balance,
                idempotency_key=operation_key("wallet", wallet.id, "opening"),
                currency=wallet.currency,
            ),
            timeout=get_settings().LEDGER_TIMEOUT_SECONDS,
            operation="wallet_opening_credit",
            wallet_id=wallet.id,
        )
    db.refresh(wallet)
    return wallet


@router.get("/{ref}/balance", response_model=BalanceRead)
def get_balance(
    ref: str,
    db: Session = Depends(get_db),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    principal: Principal = Depends(require_role({"party"})),
) -> BalanceRead:
    ensure_party(principal, ref, action="read balances")
    if db.scalars(select(Wallet.id).where(Wallet.ref == ref)).first() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("WALLET_NOT_FOUND", "Wallet not found."),
        )
    balance = ledger.get_balance(ref)
    return BalanceRead(
        wallet_ref=ref,
        available=balance.available,
        pending=balance.pending,
        total=balance.total,
    )
