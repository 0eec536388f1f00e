"""Idempotency helpers."""
from typing import Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


def get_existing_by_key(
    db: Session,
    model: Type[T],
    key_value: str | None,
    *,
    key_field: str = "idempotency_key",
) -> Optional[T]:
    """Return the row already written under ``key_value``, if any."""

    if not key_value or not key_value.strip():
        return None
    column = getattr(model, key_field, None)
    if column is None:
        raise AttributeError(f"{model.__name__} has no field '{key_field}'")
    return db.scalars(select(model).where(column == key_value).limit(1)).first()


def operation_key(aggregate: str, aggregate_id: int, step: str) -> str:
    """Build the ledger idempotency key for one step of an aggregate.

    Keys depend only on the aggregate and the step, so every retry of the
    same step reuses the same key.
    """

    return f"{aggregate}:{aggregate_id}:{step}"


__all__ = ["get_existing_by_key", "operation_key"]
