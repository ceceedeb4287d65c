from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


MFAMethodType = Literal["totp", "email", "recovery_code"]


# Request schemas
class SignUpRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=32, pattern=r"^[a-zA-Z0-9_.-]+$")
    display_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)


class SignInRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255, description="Email or username")
    password: str = Field(..., min_length=1, max_length=256)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class StateTokenRequest(BaseModel):
    state_token: str = Field(..., min_length=1)


class SelectMFAMethodRequest(StateTokenRequest):
    method: MFAMethodType


class MFACodeRequest(StateTokenRequest):
    code: str = Field(..., min_length=1, max_length=64)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=1, max_length=256)


class ValidatePasswordRequest(BaseModel):
    password: str = Field(..., max_length=256)
    username: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1, max_length=64)
    new_password: str = Field(..., min_length=1, max_length=256)


class ChangeEmailRequest(BaseModel):
    new_email: EmailStr
    password: str


class EmailVerificationRequest(BaseModel):
    email: EmailStr


class ConfirmEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1, max_length=64)


# Response schemas
class UserResponse(BaseModel):
    id: UUID
    username: str
    display_name: str
    email: str
    email_verified: bool
    role: str
    totp_mfa_enabled: bool
    email_mfa_enabled: bool
    last_sign_in_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: datetime


class SignInResponse(BaseModel):
    """
    Result of a sign-in step. On SUCCESS the token fields are set; on any
    MFA_* status ``state_token`` identifies the pending sign-in.
    """
    status: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    expires_at: Optional[datetime] = None
    user: Optional[UserResponse] = None
    requires_totp: bool = False
    requires_email_verification: bool = False
    state_token: Optional[str] = None
    available_mfa_methods: List[MFAMethodType] = []
    masked_email: Optional[str] = None


class ResendCodeResponse(BaseModel):
    message: str
    masked_email: Optional[str] = None


class PasswordViolationResponse(BaseModel):
    code: str
    message: str


class PasswordValidationResponse(BaseModel):
    is_valid: bool
    errors: List[PasswordViolationResponse]
    strength: str
    strength_score: int
    entropy: float
    suggestions: List[str]


class MessageResponse(BaseModel):
    message: str
