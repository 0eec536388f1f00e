"""Alert service helpers."""
import logging
from typing import Any

from sqlalchemy.orm import Session

from settlement.models.alert import Alert

logger = logging.getLogger(__name__)

MANUAL_INTERVENTION = "MANUAL_INTERVENTION_REQUIRED"


def raise_alert(
    db: Session,
    *,
    alert_type: str,
    message: str,
    entity: str,
    entity_id: int,
    payload: dict[str, Any],
) -> Alert:
    """Stage an operational alert alongside the caller's state change."""

    alert = Alert(type=alert_type, message=message, entity=entity, entity_id=entity_id, payload_json=payload)
    db.add(alert)
    logger.error(
        "Alert raised",
        extra={"type": alert_type, "entity": entity, "entity_id": entity_id, "payload": payload},
    )
    return alert
