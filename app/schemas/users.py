from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from app.schemas.auth import UserResponse


RoleType = Literal["admin", "staff", "seller", "customer"]


class AvailabilityResponse(BaseModel):
    available: bool
    identifier: str
    type: Literal["username", "email"]


class UpdateProfileRequest(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)


class AdminCreateUserRequest(BaseModel):
    """Create an account with an explicit role (staff, sellers, other admins)."""
    username: str = Field(..., min_length=3, max_length=32, pattern=r"^[a-zA-Z0-9_.-]+$")
    display_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)
    role: RoleType = "customer"


class UpdateUserRoleRequest(BaseModel):
    role: RoleType


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
