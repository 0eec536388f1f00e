"""Domain event outbox and in-process listeners.

Transitions stage a ``DomainEvent`` in the same unit of work as the state
change; ``relay_pending_events_once`` later hands undelivered events to the
registered listeners (report exporters, notification jobs) and stamps
``dispatched_at``. A listener failure leaves the event pending for the next
relay run.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.db import session_scope
from settlement.models.event import DomainEvent
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)

Listener = Callable[[DomainEvent], None]

ESCROW_CREATED = "EscrowCreated"
ESCROW_FUNDED = "EscrowFunded"
MILESTONE_COMPLETED = "MilestoneCompleted"
MILESTONE_APPROVED = "MilestoneApproved"
ESCROW_RELEASED = "EscrowReleased"
ESCROW_FAILED = "EscrowFailed"
DISPUTE_OPENED = "DisputeOpened"
DISPUTE_RESOLVED = "DisputeResolved"
TRANSFER_COMPLETED = "TransferCompleted"
TRANSFER_FAILED = "TransferFailed"
TRANSFER_CANCELLED = "TransferCancelled"

_listeners: dict[str, list[Listener]] = defaultdict(list)
ANY_KIND = "*"


def subscribe(kind: str, listener: Listener) -> None:
    """Register ``listener`` for ``kind`` (or ``"*"`` for every event)."""

    _listeners[kind].append(listener)


def unsubscribe(kind: str, listener: Listener) -> None:
    if listener in _listeners.get(kind, []):
        _listeners[kind].remove(listener)


def _status_value(status: Enum | str | None) -> str | None:
    if status is None:
        return None
    return status.value if isinstance(status, Enum) else str(status)


def emit_event(
    db: Session,
    *,
    aggregate_type: str,
    aggregate_id: int,
    kind: str,
    from_status: Enum | str | None = None,
    to_status: Enum | str | None = None,
    data: dict[str, Any] | None = None,
) -> DomainEvent:
    """Stage a domain event; it is persisted by the caller's commit."""

    event = DomainEvent(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        kind=kind,
        from_status=_status_value(from_status),
        to_status=_status_value(to_status),
        data_json=data or {},
        at=utcnow(),
    )
    db.add(event)
    return event


def list_events(db: Session, *, after_id: int = 0, limit: int = 100, kind: str | None = None) -> list[DomainEvent]:
    stmt = select(DomainEvent).where(DomainEvent.id > after_id)
    if kind:
        stmt = stmt.where(DomainEvent.kind == kind)
    stmt = stmt.order_by(DomainEvent.id.asc()).limit(limit)
    return list(db.scalars(stmt).all())


def _deliver(event: DomainEvent) -> None:
    for listener in [*_listeners.get(event.kind, []), *_listeners.get(ANY_KIND, [])]:
        listener(event)


def relay_pending_events_once(db_session: Session | None = None, *, batch_size: int = 100) -> int:
    """Deliver undispatched events to listeners; return how many were delivered."""

    delivered = 0
    with session_scope(db_session) as session:
        stmt = (
            select(DomainEvent)
            .where(DomainEvent.dispatched_at.is_(None))
            .order_by(DomainEvent.id.asc())
            .limit(batch_size)
        )
        for event in session.scalars(stmt).all():
            try:
                _deliver(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event listener failed", extra={"event_id": event.id, "kind": event.kind})
                break
            event.dispatched_at = utcnow()
            delivered += 1
        session.commit()
    if delivered:
        logger.info("Domain events relayed", extra={"delivered": delivered})
    return delivered


__all__ = [
    "ANY_KIND",
    "ESCROW_CREATED",
    "ESCROW_FUNDED",
    "MILESTONE_COMPLETED",
    "MILESTONE_APPROVED",
    "ESCROW_RELEASED",
    "ESCROW_FAILED",
    "DISPUTE_OPENED",
    "DISPUTE_RESOLVED",
    "TRANSFER_COMPLETED",
    "TRANSFER_FAILED",
    "TRANSFER_CANCELLED",
    "subscribe",
    "unsubscribe",
    "emit_event",
    "list_events",
    "relay_pending_events_once",
]
