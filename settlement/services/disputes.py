"""Dispute handling: opening freezes the escrow, resolution resumes or cancels it."""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from settlement.models import Dispute, DisputeOutcome, DisputeStatus, EscrowStatus
from settlement.repositories import EscrowRepository
from settlement.schemas.dispute import DisputeCreate
from settlement.services import events
from settlement.services.state_machines import dispute_transition, escrow_transition
from settlement.utils.audit import log_audit
from settlement.utils.errors import ConcurrentModification, DisputeAlreadyOpen
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)


def open_dispute(repo: EscrowRepository, escrow_id: int, payload: DisputeCreate, *, actor: str) -> Dispute:
    """Open a dispute on an active escrow and move the escrow to DISPUTED."""

    escrow = repo.get(escrow_id, for_update=True)
    existing = repo.unresolved_dispute(escrow)
    if existing is not None:
        logger.warning(
            "Dispute already open",
            extra={"escrow_id": escrow.id, "dispute_id": existing.id},
        )
        raise DisputeAlreadyOpen(
            "An unresolved dispute already exists for this escrow.",
            escrow_id=escrow.id,
            dispute_id=existing.id,
        )
    target = escrow_transition(escrow.status, "dispute", escrow_id=escrow.id)
    if payload.milestone_id is not None:
        repo.get_milestone(escrow, payload.milestone_id)

    dispute = Dispute(
        escrow_id=escrow.id,
        milestone_id=payload.milestone_id,
        title=payload.title,
        description=payload.description,
        status=DisputeStatus.OPEN,
        opened_by=actor,
    )
    previous = escrow.status
    escrow.status = target
    escrow.disputes.append(dispute)
    try:
        repo.db.flush()
    except IntegrityError as exc:
        # partial unique index on unresolved disputes lost a race
        repo.db.rollback()
        raise DisputeAlreadyOpen(
            "An unresolved dispute already exists for this escrow.", escrow_id=escrow_id
        ) from exc
    except StaleDataError as exc:
        repo.db.rollback()
        raise ConcurrentModification(
            "Escrow was modified concurrently; reload and retry.", entity="Escrow", id=escrow_id
        ) from exc

    events.emit_event(
        repo.db,
        aggregate_type="Escrow",
        aggregate_id=escrow.id,
        kind=events.DISPUTE_OPENED,
        from_status=previous,
        to_status=target,
        data={"dispute_id": dispute.id, "milestone_id": dispute.milestone_id},
    )
    log_audit(
        repo.db,
        actor=actor,
        action="DISPUTE_OPENED",
        entity="Dispute",
        entity_id=dispute.id,
        data={"escrow_id": escrow.id, "milestone_id": dispute.milestone_id, "title": dispute.title},
    )
    repo.save(dispute)
    logger.info("Dispute opened", extra={"escrow_id": escrow.id, "dispute_id": dispute.id})
    return dispute


def get_dispute(repo: EscrowRepository, dispute_id: int) -> Dispute:
    return repo.get_dispute(dispute_id)


def start_review(repo: EscrowRepository, dispute_id: int, *, actor: str) -> Dispute:
    dispute = repo.get_dispute(dispute_id)
    dispute.status = dispute_transition(dispute.status, "review", dispute_id=dispute.id)
    log_audit(
        repo.db,
        actor=actor,
        action="DISPUTE_UNDER_REVIEW",
        entity="Dispute",
        entity_id=dispute.id,
        data={"escrow_id": dispute.escrow_id},
    )
    repo.save(dispute)
    return dispute


def resolve_dispute(
    repo: EscrowRepository,
    dispute_id: int,
    outcome: DisputeOutcome,
    *,
    actor: str,
    note: str | None = None,
) -> Dispute:
    """Close the dispute and apply ``outcome`` to the escrow.

    ``resume`` returns the escrow to ACTIVE; ``cancel`` ends it in CANCELLED.
    Refunding a funded buyer after cancellation happens downstream;
    ``refund_due`` on the DisputeResolved event carries the amount.
    """

    dispute = repo.get_dispute(dispute_id)
    escrow = dispute.escrow
    dispute_target = dispute_transition(dispute.status, "resolve", dispute_id=dispute.id)
    escrow_target = escrow_transition(escrow.status, DisputeOutcome(outcome).value, escrow_id=escrow.id)

    dispute.status = dispute_target
    dispute.outcome = DisputeOutcome(outcome)
    dispute.resolution_note = note
    dispute.resolved_by = actor
    dispute.resolved_at = utcnow()
    previous = escrow.status
    escrow.status = escrow_target

    refund_due = escrow_target == EscrowStatus.CANCELLED and escrow.funded_at is not None
    events.emit_event(
        repo.db,
        aggregate_type="Escrow",
        aggregate_id=escrow.id,
        kind=events.DISPUTE_RESOLVED,
        from_status=previous,
        to_status=escrow_target,
        data={
            "dispute_id": dispute.id,
            "outcome": dispute.outcome.value,
            "refund_due": str(escrow.total_amount) if refund_due else None,
        },
    )
    log_audit(
        repo.db,
        actor=actor,
        action="DISPUTE_RESOLVED",
        entity="Dispute",
        entity_id=dispute.id,
        data={"escrow_id": escrow.id, "outcome": dispute.outcome.value, "escrow_status": escrow_target.value},
    )
    repo.save(dispute)
    logger.info(
        "Dispute resolved",
        extra={"dispute_id": dispute.id, "escrow_id": escrow.id, "outcome": dispute.outcome.value},
    )
    return dispute


__all__ = ["open_dispute", "get_dispute", "start_review", "resolve_dispute"]
