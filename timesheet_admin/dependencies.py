"""
Authentication and authorization dependencies.

Supports JWT auth (production) with demo-header identity when AUTH_MODE=demo.
Unlike tokens, demo headers carry no proof: only enable demo mode locally.
Demo headers must name an existing user, whose stored role always applies.

A request without any identity is rejected; nothing is fetched or mutated on
behalf of an anonymous caller.
"""

import os
import uuid
from dataclasses import dataclass
from fastapi import HTTPException, Header, Depends
from sqlalchemy.orm import Session
from typing import Optional

from timesheet_admin.database import get_db
from timesheet_admin.services.auth import decode_access_token
from timesheet_admin.models.user import User, USER_ROLES, ROLE_MANAGER, ROLE_ADMIN

AUTH_MODE = os.getenv("AUTH_MODE", "jwt")  # "demo" or "jwt"


@dataclass(frozen=True)
class Identity:
    """The acting user as seen by the views."""

    id: uuid.UUID
    role: str
    username: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or str(self.id)


def _as_uuid(value) -> uuid.UUID:
    if value is None:
        raise ValueError("None is not a UUID")
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _identity_from_user(user: User) -> Identity:
    return Identity(id=user.id, role=str(user.role), username=user.username, full_name=user.full_name)


def _identity_from_token(token: str, db: Session) -> Identity:
    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        user_uuid = _as_uuid(sub)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject (user id)")

    user = db.query(User).filter(User.id == user_uuid).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return _identity_from_user(user)


def _identity_from_headers(x_user_id: str, x_user_role: Optional[str], db: Session) -> Identity:
    try:
        user_uuid = _as_uuid(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id (must be UUID)")

    if x_user_role is not None and x_user_role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid X-User-Role")

    user = db.query(User).filter(User.id == user_uuid).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    # the stored role is authoritative; the header may only restate it
    if x_user_role is not None and x_user_role != str(user.role):
        raise HTTPException(status_code=403, detail="X-User-Role does not match user")
    return _identity_from_user(user)


def get_current_identity(
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Optional[Identity]:
    """Resolve the caller. Returns None when no identity was presented."""
    if authorization:
        token = authorization.removeprefix("Bearer ").strip()
        if token:
            return _identity_from_token(token, db)

    if AUTH_MODE == "demo" and x_user_id:
        return _identity_from_headers(x_user_id, x_user_role, db)

    return None


def require_identity(identity: Optional[Identity] = Depends(get_current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def require_manager(identity: Identity = Depends(require_identity)) -> Identity:
    """Require manager or admin role."""
    if identity.role not in (ROLE_MANAGER, ROLE_ADMIN):
        raise HTTPException(status_code=403, detail="Manager access required")
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    """Require admin role."""
    if identity.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
