"""Dispute endpoints."""
from fastapi import APIRouter, Body, Depends, status

from settlement.models import Dispute
from settlement.repositories import EscrowRepository, get_escrow_repository
from settlement.schemas.dispute import DisputeCreate, DisputeRead, DisputeResolve
from settlement.security import Principal, ensure_party, require_role
from settlement.services import disputes as dispute_service
from settlement.services import escrow as escrow_service

router = APIRouter(tags=["disputes"])


@router.post(
    "/escrows/{escrow_id}/disputes",
    response_model=DisputeRead,
    status_code=status.HTTP_201_CREATED,
)
def open_dispute(
    escrow_id: int,
    payload: DisputeCreate,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> Dispute:
    escrow = escrow_service.get_escrow(repo, escrow_id)
    ensure_party(principal, escrow.buyer_ref, escrow.seller_ref, action="open disputes")
    return dispute_service.open_dispute(repo, escrow_id, payload, actor=principal.actor)


@router.get("/disputes/{dispute_id}", response_model=DisputeRead)
def read_dispute(
    dispute_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party", "resolver"})),
) -> Dispute:
    dispute = dispute_service.get_dispute(repo, dispute_id)
    ensure_party(principal, dispute.escrow.buyer_ref, dispute.escrow.seller_ref, action="read")
    return dispute


@router.post("/disputes/{dispute_id}/review", response_model=DisputeRead)
def start_review(
    dispute_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"resolver"})),
) -> Dispute:
    return dispute_service.start_review(repo, dispute_id, actor=principal.actor)


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeRead)
def resolve_dispute(
    dispute_id: int,
    payload: DisputeResolve = Body(...),
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"resolver"})),
) -> Dispute:
    """Resume or cancel the disputed escrow (resolver or admin only)."""

    return dispute_service.resolve_dispute(
        repo, dispute_id, payload.outcome, actor=principal.actor, note=payload.note
    )
