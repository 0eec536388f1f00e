"""Direct transfer endpoints."""
from fastapi import APIRouter, Body, Depends

from settlement.models import DirectTransfer
from settlement.repositories import TransferRepository, get_transfer_repository
from settlement.schemas.transfer import DirectTransferRead, TransferCancel
from settlement.security import Principal, ensure_party, require_role
from settlement.services import transfers as transfer_service
from settlement.services.ledger import DatabaseWalletLedger, get_ledger

router = APIRouter(prefix="/transfers", tags=["transfers"])


def _authorise(
    repo: TransferRepository, transfer_id: int, principal: Principal, *, buyer_only: bool, action: str
) -> DirectTransfer:
    transfer = transfer_service.get_transfer(repo, transfer_id)
    refs = (transfer.buyer_ref,) if buyer_only else (transfer.buyer_ref, transfer.seller_ref)
    ensure_party(principal, *refs, action=action)
    return transfer


@router.get("/{transfer_id}", response_model=DirectTransferRead)
def read_transfer(
    transfer_id: int,
    repo: TransferRepository = Depends(get_transfer_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> DirectTransfer:
    return _authorise(repo, transfer_id, principal, buyer_only=False, action="read")


@router.post("/{transfer_id}/confirm", response_model=DirectTransferRead)
def confirm_transfer(
    transfer_id: int,
    repo: TransferRepository = Depends(get_transfer_repository),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    principal: Principal = Depends(require_role({"party"})),
) -> DirectTransfer:
    _authorise(repo, transfer_id, principal, buyer_only=True, action="confirm")
    return transfer_service.confirm_transfer(repo, transfer_id, ledger, actor=principal.actor)


@router.post("/{transfer_id}/process", response_model=DirectTransferRead)
async def process_transfer(
    transfer_id: int,
    repo: TransferRepository = Depends(get_transfer_repository),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    principal: Principal = Depends(require_role({"party"})),
) -> DirectTransfer:
    """Move the money; timeouts answer 504 and leave the transfer retryable."""

    _authorise(repo, transfer_id, principal, buyer_only=True, action="process")
    return await transfer_service.process_transfer(repo, transfer_id, ledger, actor=principal.actor)


@router.post("/{transfer_id}/cancel", response_model=DirectTransferRead)
def cancel_transfer(
    transfer_id: int,
    payload: TransferCancel | None = Body(default=None),
    repo: TransferRepository = Depends(get_transfer_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> DirectTransfer:
    _authorise(repo, transfer_id, principal, buyer_only=True, action="cancel")
    reason = payload.reason if payload else None
    return transfer_service.cancel_transfer(repo, transfer_id, actor=principal.actor, reason=reason)
