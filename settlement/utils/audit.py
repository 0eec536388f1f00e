"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from settlement.models.audit import AuditLog
from settlement.utils.time import utcnow

SENSITIVE_KEYS = {"email", "buyer_ref", "seller_ref", "wallet_ref", "evidence_ref"}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    text = str(value)
    if key == "email":
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    # party and document references keep a short suffix for correlation
    if len(text) <= 4:
        return "***"
    return f"***{text[-4:]}"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with personal references masked."""

    if isinstance(data, Mapping):
        return {
            key: sanitize_payload_for_audit(_mask_value(key, value) if key in SENSITIVE_KEYS else value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Stage an audit entry; the caller's commit persists it."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


__all__ = ["SENSITIVE_KEYS", "sanitize_payload_for_audit", "log_audit"]
