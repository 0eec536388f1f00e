"""Security dependencies for API key validation and role enforcement."""
from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from settlement.config import API_ROLES, get_settings
from settlement.db import get_db
from settlement.utils.audit import log_audit
from settlement.utils.errors import error_response


@dataclass(frozen=True)
class Principal:
    """The caller behind an API key."""

    actor: str
    role: str
    party_ref: str | None = None

    @property
    def is_legacy(self) -> bool:
        return self.actor == "legacy-apikey"


def key_fingerprint(raw: str) -> str:
    """Return a short HMAC fingerprint used as the actor id for ``raw``."""

    secret = get_settings().SECRET_KEY.encode()
    return hmac.new(secret, raw.encode(), hashlib.sha256).hexdigest()[:12]


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``X-API-Key`` or ``Authorization: Bearer``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> Principal:
    """Resolve the presented token to a ``Principal``."""

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    settings = get_settings()
    if settings.DEV_API_KEY and secrets.compare_digest(token, settings.DEV_API_KEY):
        if not settings.dev_key_allowed:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=error_response("LEGACY_KEY_FORBIDDEN", "Legacy dev key disabled."),
            )
        log_audit(
            db,
            actor="legacy-apikey",
            action="LEGACY_API_KEY_USED",
            entity="ApiKey",
            entity_id=0,
            data={"env": settings.app_env},
        )
        db.commit()
        return Principal(actor="legacy-apikey", role="admin")

    for candidate, role in settings.API_KEYS.items():
        if secrets.compare_digest(token, candidate):
            party_ref = settings.API_KEY_PARTIES.get(candidate) if role == "party" else None
            return Principal(actor=f"apikey:{key_fingerprint(token)}", role=role, party_ref=party_ref)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
    )


def require_role(allowed: Set[str]) -> Callable:
    """Require the caller to hold one of ``allowed``; admin passes everywhere."""

    if not allowed:
        raise RuntimeError("require_role needs a non-empty set of roles")
    unknown = set(allowed) - API_ROLES
    if unknown:
        raise RuntimeError(f"Unknown roles: {sorted(unknown)}")

    def _dep(principal: Principal = Depends(require_api_key)) -> Principal:
        if principal.role == "admin" or principal.role in allowed:
            return principal
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_ROLE",
                f"Requires one of: {sorted(allowed)}",
            ),
        )

    return _dep


def ensure_party(principal: Principal, *refs: str, action: str) -> None:
    """Refuse a bound party key acting on a record it is not a party to.

    Unbound party keys pass; deployments that issue them authorise the
    party at the gateway. Resolver and admin keys are never bound.
    """

    if principal.party_ref is None or principal.party_ref in refs:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=error_response(
            "NOT_A_PARTY",
            f"This key may not {action} for this record.",
            {"party_ref": principal.party_ref},
        ),
    )


__all__ = ["Principal", "ensure_party", "key_fingerprint", "require_api_key", "require_role"]
