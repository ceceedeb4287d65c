from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_auth_runtime, get_current_user, get_db
from app.core.rate_limit import limiter
from app.core.runtime import AuthRuntime
from app.core.sanitization import sanitize_code
from app.models import User
from app.schemas.auth import MessageResponse
from app.schemas.mfa import (
    EmailCodeRequest,
    EmailMFAStatusResponse,
    MFAMethodsResponse,
    PasswordConfirmationRequest,
    TOTPCodeRequest,
    TOTPSetupResponse,
    TOTPStatusResponse,
)
from app.services.email_mfa_service import EmailMFAService
from app.services.recovery_code_service import RecoveryCodeService
from app.services.totp_service import TOTPService


router = APIRouter(prefix="/mfa", tags=["Multi-factor authentication"])


# Authenticator app

@router.post("/totp/setup", response_model=TOTPSetupResponse)
@limiter.limit("5/minute")
def setup_totp(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """
    Start TOTP enrolment. Returns the secret and an ``otpauth://`` URI for
    the QR code. TOTP stays off until ``/totp/verify`` confirms a code.
    """
    return TOTPSetupResponse(**TOTPService(db, runtime).setup(current_user))


@router.post("/totp/verify", response_model=MessageResponse)
@limiter.limit("10/minute")
def verify_totp_setup(
    request: Request,
    data: TOTPCodeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Confirm the first code and turn TOTP on. Existing tokens stop working and the user must sign in again."""
    TOTPService(db, runtime).verify_and_enable(current_user, sanitize_code(data.code))
    return MessageResponse(message="TOTP enabled. Please sign in again.")


@router.post("/totp/disable", response_model=MessageResponse)
@limiter.limit("5/minute")
def disable_totp(
    request: Request,
    data: PasswordConfirmationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Turn TOTP off. Existing tokens stop working and the user must sign in again."""
    TOTPService(db, runtime).disable(current_user, data.password)
    return MessageResponse(message="TOTP disabled. Please sign in again.")


@router.get("/totp/status", response_model=TOTPStatusResponse)
def totp_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    return TOTPStatusResponse(**TOTPService(db, runtime).status(current_user))


# Email codes

@router.post("/email/enable", response_model=MessageResponse)
@limiter.limit("5/minute")
def enable_email_mfa(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Send a confirmation code. Requires a verified email address."""
    EmailMFAService(db, runtime).enable(current_user)
    return MessageResponse(message="Verification code sent")


@router.post("/email/verify", response_model=MessageResponse)
@limiter.limit("10/minute")
def verify_email_mfa(
    request: Request,
    data: EmailCodeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Confirm the emailed code and turn email MFA on. Existing tokens stop working and the user must sign in again."""
    EmailMFAService(db, runtime).verify(current_user, sanitize_code(data.code))
    return MessageResponse(message="Email MFA enabled. Please sign in again.")


@router.post("/email/resend", response_model=MessageResponse)
@limiter.limit("5/minute")
def resend_email_mfa_code(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    EmailMFAService(db, runtime).resend(current_user)
    return MessageResponse(message="Verification code sent")


@router.post("/email/disable", response_model=MessageResponse)
@limiter.limit("5/minute")
def disable_email_mfa(
    request: Request,
    data: PasswordConfirmationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    EmailMFAService(db, runtime).disable(current_user, data.password)
    return MessageResponse(message="Email MFA disabled. Please sign in again.")


@router.get("/email/status", response_model=EmailMFAStatusResponse)
def email_mfa_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    return EmailMFAStatusResponse(**EmailMFAService(db, runtime).status(current_user))


@router.get("/methods", response_model=MFAMethodsResponse)
def mfa_methods(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Which second factors are set up for the current user."""
    return MFAMethodsResponse(
        totp_enabled=bool(current_user.totp_mfa_enabled),
        email_enabled=bool(current_user.email_mfa_enabled),
        email_verified=bool(current_user.email_verified),
        recovery_codes=RecoveryCodeService(db, runtime).has_valid_codes(current_user),
    )
