"""Domain event schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class DomainEventRead(BaseModel):
    id: int
    aggregate_type: str
    aggregate_id: int
    kind: str
    from_status: str | None
    to_status: str | None
    data_json: dict[str, Any]
    at: datetime
    dispatched_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
