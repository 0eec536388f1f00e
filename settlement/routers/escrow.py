"""Escrow and milestone endpoints."""
from fastapi import APIRouter, Body, Depends

from settlement.models import Escrow, Milestone
from settlement.repositories import EscrowRepository, get_escrow_repository
from settlement.schemas.escrow import EscrowProgressRead, EscrowRead
from settlement.schemas.milestone import ConfirmationCreate, MilestoneRead
from settlement.security import Principal, ensure_party, require_role
from settlement.services import escrow as escrow_service
from settlement.services import milestones as milestone_service
from settlement.services.ledger import DatabaseWalletLedger, get_ledger

router = APIRouter(prefix="/escrows", tags=["escrow"])

BOTH_SIDES = ("buyer", "seller")


def _authorise(repo: EscrowRepository, escrow_id: int, principal: Principal, sides, action: str) -> Escrow:
    escrow = escrow_service.get_escrow(repo, escrow_id)
    ensure_party(principal, *(getattr(escrow, f"{side}_ref") for side in sides), action=action)
    return escrow


@router.get("/{escrow_id}", response_model=EscrowRead)
def read_escrow(
    escrow_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> Escrow:
    return _authorise(repo, escrow_id, principal, BOTH_SIDES, "read")


@router.get("/{escrow_id}/progress", response_model=EscrowProgressRead)
def read_progress(
    escrow_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> EscrowProgressRead:
    progress = milestone_service.escrow_progress(_authorise(repo, escrow_id, principal, BOTH_SIDES, "read"))
    return EscrowProgressRead(**progress.__dict__)


@router.post("/{escrow_id}/fund", response_model=EscrowRead)
async def fund_escrow(
    escrow_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    principal: Principal = Depends(require_role({"party"})),
) -> Escrow:
    _authorise(repo, escrow_id, principal, ("buyer",), "fund")
    return await escrow_service.fund_escrow(repo, escrow_id, ledger, actor=principal.actor)


@router.post("/{escrow_id}/release", response_model=EscrowRead)
async def release_escrow(
    escrow_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    ledger: DatabaseWalletLedger = Depends(get_ledger),
    principal: Principal = Depends(require_role({"party"})),
) -> Escrow:
    """Pay the seller; refused with 409 while any milestone is unapproved."""

    _authorise(repo, escrow_id, principal, ("buyer",), "release")
    return await escrow_service.release_escrow(repo, escrow_id, ledger, actor=principal.actor)


@router.post("/{escrow_id}/milestones/{milestone_id}/start", response_model=MilestoneRead)
def start_milestone(
    escrow_id: int,
    milestone_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> Milestone:
    _authorise(repo, escrow_id, principal, ("seller",), "start milestones")
    return milestone_service.start_milestone(repo, escrow_id, milestone_id, actor=principal.actor)


@router.post("/{escrow_id}/milestones/{milestone_id}/confirm", response_model=MilestoneRead)
def confirm_milestone(
    escrow_id: int,
    milestone_id: int,
    payload: ConfirmationCreate | None = Body(default=None),
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> Milestone:
    _authorise(repo, escrow_id, principal, BOTH_SIDES, "confirm milestones")
    return milestone_service.record_confirmation(
        repo,
        escrow_id,
        milestone_id,
        actor=principal.actor,
        evidence_ref=payload.evidence_ref if payload else None,
    )


@router.post("/{escrow_id}/milestones/{milestone_id}/approve", response_model=MilestoneRead)
def approve_milestone(
    escrow_id: int,
    milestone_id: int,
    repo: EscrowRepository = Depends(get_escrow_repository),
    principal: Principal = Depends(require_role({"party"})),
) -> Milestone:
    _authorise(repo, escrow_id, principal, ("buyer",), "approve milestones")
    return milestone_service.approve_milestone(repo, escrow_id, milestone_id, actor=principal.actor)
