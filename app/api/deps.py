from typing import Any, Generator, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.exceptions import ForbiddenError, TokenError
from app.core.runtime import AuthRuntime
from app.models import User
from app.services.token_service import TokenService


# HTTP Bearer token scheme. Missing credentials are reported as our own 401.
security = HTTPBearer(auto_error=False)


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_auth_runtime(request: Request) -> AuthRuntime:
    """The process-wide blacklist, lockout and sign-in state, built in the lifespan."""
    return request.app.state.auth_runtime


def get_current_user_and_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
) -> tuple[User, dict[str, Any]]:
    """
    Validate the bearer access token.
    Raises a TokenError (401) if it is missing, malformed, expired,
    blacklisted or issued before the user's last token version bump.
    """
    if credentials is None or not credentials.credentials:
        raise TokenError()
    return TokenService(db, runtime).authenticate(credentials.credentials)


def get_current_user(
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
) -> User:
    return user_payload[0]


def get_current_session_id(payload: dict[str, Any]) -> Optional[UUID]:
    sid = payload.get("sid")
    if not sid:
        return None
    try:
        return UUID(sid)
    except ValueError:
        return None


def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Dependency to require admin role.
    Raises ForbiddenError if user is not an admin.
    """
    if current_user.role != "admin":
        raise ForbiddenError("Admin access required")
    return current_user
