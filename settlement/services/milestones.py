"""Milestone progression inside an active escrow.

Every write bumps the owning escrow's version so concurrent confirmations on
sibling milestones cannot interleave with a release decision.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from settlement.models import Escrow, EscrowStatus, Milestone, MilestoneStatus
from settlement.repositories import EscrowRepository
from settlement.services import events
from settlement.services.state_machines import milestone_transition
from settlement.utils.audit import log_audit
from settlement.utils.errors import InvalidMilestoneTransition
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)

DONE_STATUSES = {MilestoneStatus.COMPLETED, MilestoneStatus.APPROVED}


@dataclass(frozen=True)
class EscrowProgress:
    escrow_id: int
    status: EscrowStatus
    progress: int
    milestones_total: int
    milestones_done: int
    outstanding_milestone_ids: list[int]


def _load(repo: EscrowRepository, escrow_id: int, milestone_id: int, event: str) -> tuple[Escrow, Milestone]:
    escrow = repo.get(escrow_id, for_update=True)
    milestone = repo.get_milestone(escrow, milestone_id)
    if escrow.status != EscrowStatus.ACTIVE:
        error = InvalidMilestoneTransition(
            current=milestone.status,
            event=event,
            escrow_id=escrow.id,
            milestone_id=milestone.id,
            escrow_status=escrow.status.value,
            precondition="escrow must be ACTIVE",
        )
        logger.warning(error.message, extra={"code": error.code, **error.details})
        raise error
    return escrow, milestone


def start_milestone(repo: EscrowRepository, escrow_id: int, milestone_id: int, *, actor: str) -> Milestone:
    escrow, milestone = _load(repo, escrow_id, milestone_id, "start")
    milestone.status = milestone_transition(milestone.status, "start", milestone_id=milestone.id)
    repo.touch(escrow)
    log_audit(
        repo.db,
        actor=actor,
        action="MILESTONE_STARTED",
        entity="Milestone",
        entity_id=milestone.id,
        data={"escrow_id": escrow.id, "idx": milestone.idx},
    )
    repo.save(milestone)
    return milestone


def record_confirmation(
    repo: EscrowRepository,
    escrow_id: int,
    milestone_id: int,
    *,
    actor: str,
    evidence_ref: str | None = None,
) -> Milestone:
    """Count one confirmation; the milestone completes once quorum is met.

    Confirmations never exceed ``required_confirmations``: once a milestone
    has reached quorum further calls return it unchanged.
    """

    escrow, milestone = _load(repo, escrow_id, milestone_id, "confirm")
    if milestone.status in DONE_STATUSES:
        logger.info(
            "Confirmation ignored; quorum already met",
            extra={"milestone_id": milestone.id, "confirmations": milestone.current_confirmations},
        )
        return milestone
    if milestone.status != MilestoneStatus.IN_PROGRESS:
        error = InvalidMilestoneTransition(
            current=milestone.status,
            event="confirm",
            allowed_from=[MilestoneStatus.IN_PROGRESS],
            milestone_id=milestone.id,
        )
        logger.warning(error.message, extra={"code": error.code, **error.details})
        raise error

    milestone.current_confirmations = min(
        milestone.current_confirmations + 1, milestone.required_confirmations
    )
    if evidence_ref:
        # reassign so the JSON column is flagged dirty
        milestone.evidence = [*(milestone.evidence or []), evidence_ref]

    completed = milestone.current_confirmations >= milestone.required_confirmations
    if completed:
        previous = milestone.status
        milestone.status = milestone_transition(milestone.status, "complete", milestone_id=milestone.id)
        milestone.completed_date = utcnow()
        events.emit_event(
            repo.db,
            aggregate_type="Milestone",
            aggregate_id=milestone.id,
            kind=events.MILESTONE_COMPLETED,
            from_status=previous,
            to_status=milestone.status,
            data={"escrow_id": escrow.id, "confirmations": milestone.current_confirmations},
        )

    repo.touch(escrow)
    log_audit(
        repo.db,
        actor=actor,
        action="MILESTONE_CONFIRMED",
        entity="Milestone",
        entity_id=milestone.id,
        data={
            "escrow_id": escrow.id,
            "confirmations": milestone.current_confirmations,
            "required": milestone.required_confirmations,
            "evidence_ref": evidence_ref,
        },
    )
    repo.save(milestone)
    logger.info(
        "Milestone confirmation recorded",
        extra={
            "milestone_id": milestone.id,
            "confirmations": milestone.current_confirmations,
            "completed": completed,
        },
    )
    return milestone


def approve_milestone(repo: EscrowRepository, escrow_id: int, milestone_id: int, *, actor: str) -> Milestone:
    escrow, milestone = _load(repo, escrow_id, milestone_id, "approve")
    previous = milestone.status
    milestone.status = milestone_transition(milestone.status, "approve", milestone_id=milestone.id)
    milestone.approved_at = utcnow()
    events.emit_event(
        repo.db,
        aggregate_type="Milestone",
        aggregate_id=milestone.id,
        kind=events.MILESTONE_APPROVED,
        from_status=previous,
        to_status=milestone.status,
        data={"escrow_id": escrow.id, "amount": str(milestone.amount)},
    )
    repo.touch(escrow)
    log_audit(
        repo.db,
        actor=actor,
        action="MILESTONE_APPROVED",
        entity="Milestone",
        entity_id=milestone.id,
        data={"escrow_id": escrow.id, "amount": str(milestone.amount)},
    )
    repo.save(milestone)
    return milestone


def escrow_progress(escrow: Escrow) -> EscrowProgress:
    """Share of milestones completed or approved, as a floored percentage."""

    total = len(escrow.milestones)
    done = sum(1 for m in escrow.milestones if m.status in DONE_STATUSES)
    return EscrowProgress(
        escrow_id=escrow.id,
        status=escrow.status,
        progress=(done * 100) // total if total else 0,
        milestones_total=total,
        milestones_done=done,
        outstanding_milestone_ids=[m.id for m in escrow.milestones if m.status != MilestoneStatus.APPROVED],
    )


__all__ = [
    "EscrowProgress",
    "start_milestone",
    "record_confirmation",
    "approve_milestone",
    "escrow_progress",
]
