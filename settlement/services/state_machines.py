"""Transition tables for every settlement aggregate.

Each ``*_transition(current, event)`` is pure: it returns the next status or
raises the aggregate's typed transition error. Services apply the returned
status to the ORM row only after every other precondition holds, so a
refused event never mutates state.
"""
from __future__ import annotations

import logging
from typing import Mapping, TypeVar

from settlement.models.direct_transfer import TransferStatus
from settlement.models.dispute import DisputeStatus
from settlement.models.escrow import EscrowStatus
from settlement.models.milestone import MilestoneStatus
from settlement.utils.errors import (
    InvalidDisputeState,
    InvalidEscrowState,
    InvalidMilestoneTransition,
    InvalidTransferState,
    InvalidTransition,
)

logger = logging.getLogger(__name__)

S = TypeVar("S")

MILESTONE_TRANSITIONS: Mapping[tuple[MilestoneStatus, str], MilestoneStatus] = {
    (MilestoneStatus.PENDING, "start"): MilestoneStatus.IN_PROGRESS,
    (MilestoneStatus.IN_PROGRESS, "complete"): MilestoneStatus.COMPLETED,
    (MilestoneStatus.COMPLETED, "approve"): MilestoneStatus.APPROVED,
}

ESCROW_TRANSITIONS: Mapping[tuple[EscrowStatus, str], EscrowStatus] = {
    (EscrowStatus.PENDING, "fund"): EscrowStatus.ACTIVE,
    (EscrowStatus.ACTIVE, "release"): EscrowStatus.COMPLETED,
    (EscrowStatus.ACTIVE, "dispute"): EscrowStatus.DISPUTED,
    (EscrowStatus.DISPUTED, "resume"): EscrowStatus.ACTIVE,
    (EscrowStatus.DISPUTED, "cancel"): EscrowStatus.CANCELLED,
    (EscrowStatus.ACTIVE, "fail"): EscrowStatus.FAILED,
}

TRANSFER_TRANSITIONS: Mapping[tuple[TransferStatus, str], TransferStatus] = {
    (TransferStatus.VALIDATION, "confirm"): TransferStatus.CONFIRMATION,
    (TransferStatus.CONFIRMATION, "process"): TransferStatus.PROCESSING,
    (TransferStatus.PROCESSING, "succeed"): TransferStatus.COMPLETE,
    (TransferStatus.PROCESSING, "retry"): TransferStatus.CONFIRMATION,
    (TransferStatus.PROCESSING, "fail"): TransferStatus.FAILED,
    (TransferStatus.VALIDATION, "cancel"): TransferStatus.CANCELLED,
    (TransferStatus.CONFIRMATION, "cancel"): TransferStatus.CANCELLED,
}

DISPUTE_TRANSITIONS: Mapping[tuple[DisputeStatus, str], DisputeStatus] = {
    (DisputeStatus.OPEN, "review"): DisputeStatus.UNDER_REVIEW,
    (DisputeStatus.OPEN, "resolve"): DisputeStatus.RESOLVED,
    (DisputeStatus.UNDER_REVIEW, "resolve"): DisputeStatus.RESOLVED,
}


def allowed_from(table: Mapping[tuple[S, str], S], event: str) -> list[S]:
    """Return the states from which ``event`` is accepted."""

    return [state for (state, name) in table if name == event]


def _apply(
    table: Mapping[tuple[S, str], S],
    error_cls: type[InvalidTransition],
    current: S,
    event: str,
    **details,
) -> S:
    target = table.get((current, event))
    if target is None:
        error = error_cls(current=current, event=event, allowed_from=allowed_from(table, event), **details)
        logger.warning(error.message, extra={"code": error.code, **error.details})
        raise error
    return target


def milestone_transition(current: MilestoneStatus, event: str, **details) -> MilestoneStatus:
    return _apply(MILESTONE_TRANSITIONS, InvalidMilestoneTransition, current, event, **details)


def escrow_transition(current: EscrowStatus, event: str, **details) -> EscrowStatus:
    return _apply(ESCROW_TRANSITIONS, InvalidEscrowState, current, event, **details)


def transfer_transition(current: TransferStatus, event: str, **details) -> TransferStatus:
    return _apply(TRANSFER_TRANSITIONS, InvalidTransferState, current, event, **details)


def dispute_transition(current: DisputeStatus, event: str, **details) -> DisputeStatus:
    return _apply(DISPUTE_TRANSITIONS, InvalidDisputeState, current, event, **details)


__all__ = [
    "MILESTONE_TRANSITIONS",
    "ESCROW_TRANSITIONS",
    "TRANSFER_TRANSITIONS",
    "DISPUTE_TRANSITIONS",
    "allowed_from",
    "milestone_transition",
    "escrow_transition",
    "transfer_transition",
    "dispute_transition",
]
