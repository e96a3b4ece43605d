from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from intake_api.core.errors import ApiError
from intake_api.db.models import User, UserRole
from intake_api.db.session import get_db
from intake_api.services.auth import resolve_session

__all__ = ["get_db", "session_token", "current_user", "require_admin"]


def session_token(request: Request) -> Optional[str]:
    """Bearer token first, then the X-Session-Id header the dashboard sends."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.headers.get("X-Session-Id") or None


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    user = resolve_session(db, session_token(request))
    if user is None:
        raise ApiError(401, "UNAUTHORIZED", "Authentication required")
    return user


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise ApiError(403, "FORBIDDEN", "Admin access required")
    return user
