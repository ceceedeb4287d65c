from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RecoveryCodesResponse(BaseModel):
    """Plaintext codes. Shown once, at generation time."""
    codes: List[str]
    message: str = "Store these codes somewhere safe. Each code can be used once."


class RegenerateRecoveryCodesRequest(BaseModel):
    password: str


class VerifyRecoveryCodeRequest(BaseModel):
    state_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=64)


class RecoveryCodeStatusResponse(BaseModel):
    enabled: bool
    has_valid_codes: bool


class RecoveryCodeSummaryResponse(BaseModel):
    total: int
    used: int
    expired: int
    remaining: int
    valid: int
    should_regenerate: bool
    next_expiration_date: Optional[datetime] = None
