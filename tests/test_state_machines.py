import pytest

from settlement.models import DisputeStatus, EscrowStatus, MilestoneStatus, TransferStatus
from settlement.services.state_machines import (
    ESCROW_TRANSITIONS,
    allowed_from,
    dispute_transition,
    escrow_transition,
    milestone_transition,
    transfer_transition,
)
from settlement.utils.errors import (
    InvalidDisputeState,
    InvalidEscrowState,
    InvalidMilestoneTransition,
    InvalidTransferState,
)


def test_milestone_happy_path():
    status = MilestoneStatus.PENDING
    for event in ("start", "complete", "approve"):
        status = milestone_transition(status, event)
    assert status == MilestoneStatus.APPROVED


@pytest.mark.parametrize(
    "current, event",
    [
        (MilestoneStatus.PENDING, "approve"),
        (MilestoneStatus.PENDING, "complete"),
        (MilestoneStatus.IN_PROGRESS, "approve"),
        (MilestoneStatus.APPROVED, "start"),
    ],
)
def test_milestone_rejects_skipped_steps(current, event):
    with pytest.raises(InvalidMilestoneTransition) as excinfo:
        milestone_transition(current, event, milestone_id=7)

    details = excinfo.value.details
    assert details["current_state"] == current.value
    assert details["attempted"] == event
    assert details["milestone_id"] == 7


def test_escrow_dispute_cycle():
    assert escrow_transition(EscrowStatus.ACTIVE, "dispute") == EscrowStatus.DISPUTED
    assert escrow_transition(EscrowStatus.DISPUTED, "resume") == EscrowStatus.ACTIVE
    assert escrow_transition(EscrowStatus.DISPUTED, "cancel") == EscrowStatus.CANCELLED


@pytest.mark.parametrize("terminal", [EscrowStatus.COMPLETED, EscrowStatus.CANCELLED, EscrowStatus.FAILED])
@pytest.mark.parametrize("event", ["fund", "release", "dispute", "resume", "cancel", "fail"])
def test_escrow_terminal_states_accept_nothing(terminal, event):
    with pytest.raises(InvalidEscrowState):
        escrow_transition(terminal, event)


def test_disputed_escrow_cannot_be_released():
    with pytest.raises(InvalidEscrowState) as excinfo:
        escrow_transition(EscrowStatus.DISPUTED, "release", escrow_id=3)

    assert excinfo.value.details["allowed_from"] == ["ACTIVE"]
    assert excinfo.value.status_code == 409


def test_allowed_from_lists_sources():
    assert set(allowed_from(ESCROW_TRANSITIONS, "cancel")) == {EscrowStatus.DISPUTED}


def test_transfer_retry_loop():
    status = transfer_transition(TransferStatus.VALIDATION, "confirm")
    status = transfer_transition(status, "process")
    status = transfer_transition(status, "retry")
    assert status == TransferStatus.CONFIRMATION
    status = transfer_transition(status, "process")
    assert transfer_transition(status, "succeed") == TransferStatus.COMPLETE


@pytest.mark.parametrize(
    "current",
    [TransferStatus.PROCESSING, TransferStatus.COMPLETE, TransferStatus.FAILED, TransferStatus.CANCELLED],
)
def test_transfer_cancel_only_before_processing(current):
    with pytest.raises(InvalidTransferState):
        transfer_transition(current, "cancel")


def test_dispute_can_resolve_without_review():
    assert dispute_transition(DisputeStatus.OPEN, "resolve") == DisputeStatus.RESOLVED
    with pytest.raises(InvalidDisputeState):
        dispute_transition(DisputeStatus.RESOLVED, "review")
