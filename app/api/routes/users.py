from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_admin
from app.core.exceptions import NotFoundError, ValidationError
from app.core.rate_limit import limiter, public_limiter
from app.core.sanitization import (
    sanitize_display_name,
    sanitize_email,
    sanitize_username,
    validate_email,
    validate_username,
)
from app.models import User
from app.schemas.auth import UserResponse
from app.schemas.users import (
    AdminCreateUserRequest,
    AvailabilityResponse,
    UpdateProfileRequest,
    UpdateUserRoleRequest,
    UserListResponse,
)
from app.services.user_service import UserService


router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/availability", response_model=AvailabilityResponse)
@public_limiter.limit("30/minute")
def check_availability(
    request: Request,
    username: Optional[str] = Query(None, max_length=32),
    email: Optional[str] = Query(None, max_length=255),
    db: Session = Depends(get_db),
):
    """
    Check whether a username or email can still be registered, e.g.
    ``/users/availability?username=sam`` or ``?email=sam@example.com``.
    """
    if username:
        username = sanitize_username(username)
        if not validate_username(username):
            raise ValidationError("Invalid username format")
        return AvailabilityResponse(
            available=UserService.is_username_available(db, username),
            identifier=username,
            type="username",
        )
    if email:
        email = sanitize_email(email)
        if not validate_email(email):
            raise ValidationError("Invalid email format")
        return AvailabilityResponse(
            available=UserService.is_email_available(db, email),
            identifier=email,
            type="email",
        )
    raise ValidationError("Either 'username' or 'email' query parameter is required")


@router.patch("/me", response_model=UserResponse)
@limiter.limit("20/minute")
def update_profile(
    request: Request,
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update profile fields that do not affect authentication."""
    display_name = None
    if data.display_name is not None:
        display_name = sanitize_display_name(data.display_name)
        if not display_name:
            raise ValidationError("Display name is required")
    user = UserService.update_profile(db, current_user, display_name=display_name)
    return UserResponse.model_validate(user)


@router.get("", response_model=UserListResponse)
def get_all_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """List accounts (Admin only)."""
    users, total = UserService.list_users(db, skip=skip, limit=limit)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    data: AdminCreateUserRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Create an account with any role (Admin only)."""
    username = sanitize_username(data.username)
    if not validate_username(username):
        raise ValidationError("Username must be 3-32 characters of letters, digits, '_', '.' or '-'")
    user = UserService.create_user(
        db,
        username=username,
        display_name=sanitize_display_name(data.display_name),
        email=sanitize_email(data.email),
        password=data.password,
        role=data.role,
    )
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Get a single account (Admin only)."""
    user = UserService.get_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User")
    return UserResponse.model_validate(user)


@router.put("/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: UUID,
    data: UpdateUserRoleRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Change a user's role (Admin only).
    The user's existing tokens carry the old role and stop working.
    """
    if user_id == admin.id and data.role != "admin":
        raise ValidationError("Admins cannot remove their own admin role")
    user = UserService.get_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User")
    return UserResponse.model_validate(UserService.set_role(db, user, data.role))
