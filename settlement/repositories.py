"""Session-backed repositories for settlement aggregates.

Services receive a repository instead of reaching for a global session, so
tests and alternative stores can inject their own. ``save`` commits the unit
of work and turns optimistic-lock conflicts into ``ConcurrentModification``.
"""
from __future__ import annotations

import logging
from typing import Generic, TypeVar

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from settlement.db import get_db
from settlement.models import DirectTransfer, Dispute, DisputeStatus, Escrow, Milestone, Transaction
from settlement.services.idempotency import get_existing_by_key
from settlement.utils.errors import ConcurrentModification, NotFound
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Repository(Generic[T]):
    model: type[T]
    label: str

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, entity_id: int, *, for_update: bool = False) -> T:
        stmt = select(self.model).where(self.model.id == entity_id)
        if for_update:
            # row lock on backends that support it; SQLite ignores it
            stmt = stmt.with_for_update()
        entity = self.db.scalars(stmt).first()
        if entity is None:
            raise NotFound(f"{self.label} not found.", entity=self.label, id=entity_id)
        return entity

    def add(self, entity: T) -> T:
        self.db.add(entity)
        self.db.flush()
        return entity

    def save(self, entity: T | None = None) -> None:
        """Commit pending changes, refreshing ``entity`` afterwards."""

        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning(
                "Optimistic lock conflict",
                extra={"entity": self.label, "entity_id": getattr(entity, "id", None)},
            )
            raise ConcurrentModification(
                f"{self.label} was modified concurrently; reload and retry.",
                entity=self.label,
                id=getattr(entity, "id", None),
            ) from exc
        if entity is not None:
            self.db.refresh(entity)


class EscrowRepository(_Repository[Escrow]):
    """Escrows and the milestones/disputes they own."""

    model = Escrow
    label = "Escrow"

    def get_milestone(self, escrow: Escrow, milestone_id: int) -> Milestone:
        for milestone in escrow.milestones:
            if milestone.id == milestone_id:
                return milestone
        raise NotFound("Milestone not found.", entity="Milestone", id=milestone_id, escrow_id=escrow.id)

    def get_dispute(self, dispute_id: int) -> Dispute:
        dispute = self.db.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFound("Dispute not found.", entity="Dispute", id=dispute_id)
        return dispute

    def unresolved_dispute(self, escrow: Escrow) -> Dispute | None:
        for dispute in escrow.disputes:
            if dispute.status != DisputeStatus.RESOLVED:
                return dispute
        return None

    def touch(self, escrow: Escrow) -> None:
        """Bump the escrow's version so all writes to its children serialise."""

        escrow.updated_at = utcnow()


class TransferRepository(_Repository[DirectTransfer]):
    model = DirectTransfer
    label = "DirectTransfer"


class TransactionRepository(_Repository[Transaction]):
    model = Transaction
    label = "Transaction"

    def get_by_idempotency_key(self, key: str | None) -> Transaction | None:
        return get_existing_by_key(self.db, Transaction, key)


def get_escrow_repository(db: Session = Depends(get_db)) -> EscrowRepository:
    return EscrowRepository(db)


def get_transfer_repository(db: Session = Depends(get_db)) -> TransferRepository:
    return TransferRepository(db)


def get_transaction_repository(db: Session = Depends(get_db)) -> TransactionRepository:
    return TransactionRepository(db)


__all__ = [
    "EscrowRepository",
    "TransferRepository",
    "TransactionRepository",
    "get_escrow_repository",
    "get_transfer_repository",
    "get_transaction_repository",
]
