from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_auth_runtime, get_current_user, get_db
from app.api.routes.auth import sign_in_response
from app.core.rate_limit import limiter, public_limiter
from app.core.runtime import AuthRuntime
from app.core.sanitization import sanitize_code
from app.models import User
from app.schemas.auth import SignInResponse
from app.schemas.recovery import (
    RecoveryCodesResponse,
    RecoveryCodeStatusResponse,
    RecoveryCodeSummaryResponse,
    RegenerateRecoveryCodesRequest,
    VerifyRecoveryCodeRequest,
)
from app.services.recovery_code_service import RecoveryCodeService
from app.services.sign_in_service import SignInService


router = APIRouter(prefix="/recovery-codes", tags=["Recovery codes"])


@router.post("/generate", response_model=RecoveryCodesResponse)
@limiter.limit("5/minute")
def generate_recovery_codes(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """
    Issue a new batch of recovery codes, replacing any previous batch.
    Requires at least one enabled second factor.
    """
    codes = RecoveryCodeService(db, runtime).generate(current_user)
    return RecoveryCodesResponse(codes=codes)


@router.post("/regenerate", response_model=RecoveryCodesResponse)
@limiter.limit("5/minute")
def regenerate_recovery_codes(
    request: Request,
    data: RegenerateRecoveryCodesRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    codes = RecoveryCodeService(db, runtime).regenerate(current_user, data.password)
    return RecoveryCodesResponse(codes=codes)


@router.post("/verify", response_model=SignInResponse)
@public_limiter.limit("10/minute")
def verify_recovery_code(
    request: Request,
    data: VerifyRecoveryCodeRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Complete a pending sign-in with a recovery code instead of the usual factor."""
    result = SignInService(db, runtime).verify_recovery_code(data.state_token, sanitize_code(data.code))
    return sign_in_response(result)


@router.get("/status", response_model=RecoveryCodeStatusResponse)
def recovery_code_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    return RecoveryCodeStatusResponse(**RecoveryCodeService(db, runtime).status(current_user))


@router.get("", response_model=RecoveryCodeSummaryResponse)
def recovery_code_summary(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    return RecoveryCodeSummaryResponse(**RecoveryCodeService(db, runtime).summary(current_user))
