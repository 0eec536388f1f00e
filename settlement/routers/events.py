"""Domain event feed for downstream consumers."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models import DomainEvent
from settlement.schemas.event import DomainEventRead
from settlement.security import Principal, require_role
from settlement.services.events import list_events

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=list[DomainEventRead])
def read_events(
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    kind: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role({"admin"})),
) -> list[DomainEvent]:
    """Return events in commit order; page with ``after_id``."""

    return list_events(db, after_id=after_id, limit=limit, kind=kind)
