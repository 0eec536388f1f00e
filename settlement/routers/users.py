"""User account endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models import UserAccount
from settlement.schemas.user import UserCreate, UserRead
from settlement.security import Principal, require_role
from settlement.utils.audit import log_audit
from settlement.utils.errors import error_response

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role({"admin"})),
) -> UserAccount:
    """Register a marketplace party and its subscription tier."""

    user = UserAccount(**payload.model_dump())
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response("USER_EXISTS", "A user with this ref or email already exists."),
        ) from exc

    log_audit(
        db,
        actor=principal.actor,
        action="CREATE_USER",
        entity="UserAccount",
        entity_id=user.id,
        data={"email": user.email, "tier": user.tier.value},
    )
    db.commit()
    db.refresh(user)
    return user


@router.get("/{ref}", response_model=UserRead)
def get_user(
    ref: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role({"admin"})),
) -> UserAccount:
    user = db.scalars(select(UserAccount).where(UserAccount.ref == ref)).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("USER_NOT_FOUND", "User not found."),
        )
    return user
