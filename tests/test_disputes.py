from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.models import DisputeOutcome, DisputeStatus, DomainEvent, EscrowStatus
from settlement.schemas.dispute import DisputeCreate
from settlement.services import disputes as dispute_service
from settlement.services import escrow as escrow_service
from settlement.services import milestones as milestone_service
from settlement.utils.errors import (
    DisputeAlreadyOpen,
    InvalidDisputeState,
    InvalidEscrowState,
    InvalidMilestoneTransition,
)

COMPLAINT = DisputeCreate(title="Short delivery", description="Only 80 of 100 units arrived.")


@pytest.fixture
async def active_escrow(make_wallet, make_escrow, escrow_repo, ledger):
    make_wallet("buyer-1", available="600000")
    escrow = make_escrow(
        "600000",
        milestones=[{"name": "Advance", "percentage": "50"}, {"name": "Final", "percentage": "50"}],
    )
    return await escrow_service.fund_escrow(escrow_repo, escrow.id, ledger, actor="buyer")


@pytest.mark.anyio
async def test_dispute_freezes_and_resume_unfreezes(active_escrow, escrow_repo, ledger):
    dispute = dispute_service.open_dispute(escrow_repo, active_escrow.id, COMPLAINT, actor="buyer")

    assert dispute.status == DisputeStatus.OPEN
    assert active_escrow.status == EscrowStatus.DISPUTED

    milestone = active_escrow.milestones[0]
    with pytest.raises(InvalidMilestoneTransition):
        milestone_service.start_milestone(escrow_repo, active_escrow.id, milestone.id, actor="seller")
    with pytest.raises(InvalidEscrowState):
        await escrow_service.release_escrow(escrow_repo, active_escrow.id, ledger, actor="buyer")

    dispute_service.start_review(escrow_repo, dispute.id, actor="resolver")
    resolved = dispute_service.resolve_dispute(
        escrow_repo, dispute.id, DisputeOutcome.RESUME, actor="resolver", note="Remaining units shipped."
    )

    assert resolved.status == DisputeStatus.RESOLVED
    assert resolved.outcome == DisputeOutcome.RESUME
    assert resolved.resolved_by == "resolver"
    assert escrow_repo.get(active_escrow.id).status == EscrowStatus.ACTIVE
    started = milestone_service.start_milestone(escrow_repo, active_escrow.id, milestone.id, actor="seller")
    assert started.status.value == "IN_PROGRESS"


@pytest.mark.anyio
async def test_cancel_outcome_flags_refund(active_escrow, escrow_repo, db_session):
    dispute = dispute_service.open_dispute(escrow_repo, active_escrow.id, COMPLAINT, actor="buyer")

    dispute_service.resolve_dispute(escrow_repo, dispute.id, DisputeOutcome.CANCEL, actor="resolver")

    assert escrow_repo.get(active_escrow.id).status == EscrowStatus.CANCELLED
    event = db_session.scalars(select(DomainEvent).where(DomainEvent.kind == "DisputeResolved")).one()
    assert event.from_status == "DISPUTED"
    assert event.to_status == "CANCELLED"
    assert event.data_json["refund_due"] == str(Decimal("600000.00"))
    assert event.data_json["outcome"] == "cancel"


@pytest.mark.anyio
async def test_second_dispute_rejected(active_escrow, escrow_repo):
    first = dispute_service.open_dispute(escrow_repo, active_escrow.id, COMPLAINT, actor="buyer")

    with pytest.raises(DisputeAlreadyOpen) as excinfo:
        dispute_service.open_dispute(escrow_repo, active_escrow.id, COMPLAINT, actor="seller")
    assert excinfo.value.details["dispute_id"] == first.id

    dispute_service.resolve_dispute(escrow_repo, first.id, DisputeOutcome.RESUME, actor="resolver")
    second = dispute_service.open_dispute(escrow_repo, active_escrow.id, COMPLAINT, actor="seller")
    assert second.id != first.id


@pytest.mark.anyio
async def test_resolved_dispute_is_final(active_escrow, escrow_repo):
    dispute = dispute_service.open_dispute(escrow_repo, active_escrow.id, COMPLAINT, actor="buyer")
    dispute_service.resolve_dispute(escrow_repo, dispute.id, DisputeOutcome.RESUME, actor="resolver")

    with pytest.raises(InvalidDisputeState):
        dispute_service.resolve_dispute(escrow_repo, dispute.id, DisputeOutcome.CANCEL, actor="resolver")
    with pytest.raises(InvalidDisputeState):
        dispute_service.start_review(escrow_repo, dispute.id, actor="resolver")


def test_pending_escrow_cannot_be_disputed(make_escrow, escrow_repo):
    escrow = make_escrow("600000")

    with pytest.raises(InvalidEscrowState):
        dispute_service.open_dispute(escrow_repo, escrow.id, COMPLAINT, actor="buyer")
    assert escrow.disputes == []


@pytest.mark.anyio
async def test_dispute_may_name_a_milestone(active_escrow, escrow_repo, db_session):
    milestone = active_escrow.milestones[1]
    payload = DisputeCreate(title="Quality", description="Grade B steel.", milestone_id=milestone.id)

    dispute = dispute_service.open_dispute(escrow_repo, active_escrow.id, payload, actor="buyer")

    assert dispute.milestone_id == milestone.id
    event = db_session.scalars(select(DomainEvent).where(DomainEvent.kind == "DisputeOpened")).one()
    assert event.aggregate_id == active_escrow.id
    assert event.data_json["milestone_id"] == milestone.id
