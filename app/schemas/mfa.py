from pydantic import BaseModel, Field


class TOTPSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str
    issuer: str


class TOTPCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8)


class EmailCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class PasswordConfirmationRequest(BaseModel):
    """Disabling a factor needs the account password."""
    password: str


class TOTPStatusResponse(BaseModel):
    enabled: bool
    pending_setup: bool


class EmailMFAStatusResponse(BaseModel):
    enabled: bool
    email_verified: bool


class MFAMethodsResponse(BaseModel):
    totp_enabled: bool
    email_enabled: bool
    email_verified: bool
    recovery_codes: bool
