"""Transaction routing endpoints."""
from fastapi import APIRouter, Depends, Header, HTTPException, Response, status

from settlement.models import Transaction
from settlement.repositories import TransactionRepository, get_transaction_repository
from settlement.schemas.transaction import FeeBreakdown, RoutingPreview, TransactionCreate, TransactionRead
from settlement.security import Principal, ensure_party, require_role
from settlement.services import routing as routing_service
from settlement.services.ledger import (
    DatabaseTierProvider,
    DatabaseWalletLedger,
    get_ledger,
    get_tier_provider,
)
from settlement.utils.errors import error_response

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("/preview", response_model=RoutingPreview)
def preview_transaction(
    payload: TransactionCreate,
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    tiers: DatabaseTierProvider = Depends(get_tier_provider),
    principal: Principal = Depends(require_role({"party"})),
) -> RoutingPreview:
    """Show the path and fees a submission would get, without persisting anything."""

    ensure_party(principal, payload.buyer_ref, action="preview transactions")
    decision, tier, balance = routing_service.preview_transaction(
        payload, balance_provider=ledger, tier_provider=tiers
    )
    fees = decision.fee_estimate
    return RoutingPreview(
        accepted=decision.accepted,
        path_kind=decision.path_kind,
        tier=tier,
        reason=decision.reason,
        fees=FeeBreakdown(**fees.as_dict()) if fees is not None else None,
        available_balance=balance.available,
        rejection=decision.rejection.to_response()["error"] if decision.rejection else None,
    )


@router.post("", response_model=TransactionRead, status_code=status.HTTP_201_CREATED)
def submit_transaction(
    payload: TransactionCreate,
    response: Response,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    repo: TransactionRepository = Depends(get_transaction_repository),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    tiers: DatabaseTierProvider = Depends(get_tier_provider),
    principal: Principal = Depends(require_role({"party"})),
) -> Transaction:
    """Route a transaction to a direct transfer or an escrow."""

    if not idempotency_key or not idempotency_key.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(
                "IDEMPOTENCY_KEY_REQUIRED",
                "Header 'Idempotency-Key' is required for POST /transactions.",
            ),
        )
    ensure_party(principal, payload.buyer_ref, action="submit transactions")
    transaction, created = routing_service.submit_transaction(
        repo,
        payload,
        balance_provider=ledger,
        tier_provider=tiers,
        idempotency_key=idempotency_key.strip(),
        actor=principal.actor,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return transaction


@router.get("/{transaction_id}", response_model=TransactionRead)
def read_transaction(
    transaction_id: int,
    repo: TransactionRepository = Depends(get_transaction_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> Transaction:
    transaction = repo.get(transaction_id)
    ensure_party(principal, transaction.buyer_ref, transaction.seller_ref, action="read")
    return transaction
