import base64
import binascii
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import (
    get_auth_runtime,
    get_current_session_id,
    get_current_user,
    get_current_user_and_payload,
    get_db,
)
from app.core.device import client_context_from_request, get_requested_access_ttl
from app.core.exceptions import InvalidCredentialsError, ValidationError
from app.core.password_policy import validate_password
from app.core.rate_limit import limiter, public_limiter
from app.core.runtime import AuthRuntime
from app.core.sanitization import (
    sanitize_code,
    sanitize_display_name,
    sanitize_email,
    sanitize_username,
    validate_username,
)
from app.core.sign_in_state import MFAMethod
from app.models import User
from app.schemas.auth import (
    ChangeEmailRequest,
    ChangePasswordRequest,
    ConfirmEmailRequest,
    EmailVerificationRequest,
    ForgotPasswordRequest,
    MessageResponse,
    MFACodeRequest,
    PasswordValidationResponse,
    RefreshTokenRequest,
    ResendCodeResponse,
    ResetPasswordRequest,
    SelectMFAMethodRequest,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    StateTokenRequest,
    TokenPairResponse,
    UserResponse,
    ValidatePasswordRequest,
)
from app.schemas.sessions import RevokedSessionsResponse, SessionListResponse, SessionResponse
from app.services.auth_service import AuthService
from app.services.session_service import SessionService
from app.services.sign_in_service import SignInResult, SignInService, SignInStatus
from app.services.token_service import IssuedTokens, TokenService


router = APIRouter(prefix="/auth", tags=["Authentication"])


def token_pair_response(tokens: IssuedTokens) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        expires_at=tokens.access_expires_at,
    )


def sign_in_response(result: SignInResult) -> SignInResponse:
    """Render any sign-in step outcome."""
    response = SignInResponse(
        status=result.status.value,
        state_token=result.state_token,
        available_mfa_methods=[method.value for method in result.available_methods],
        masked_email=result.masked_email,
        requires_totp=result.status == SignInStatus.MFA_TOTP_REQUIRED,
        requires_email_verification=result.status == SignInStatus.MFA_EMAIL_REQUIRED,
    )
    if result.tokens is not None:
        response.access_token = result.tokens.access_token
        response.refresh_token = result.tokens.refresh_token
        response.token_type = "bearer"
        response.expires_in = result.tokens.expires_in
        response.expires_at = result.tokens.access_expires_at
        response.user = UserResponse.model_validate(result.user)
    return response


def _basic_credentials(request: Request) -> Optional[tuple[str, str]]:
    """Decode an ``Authorization: Basic`` header into (identifier, password)."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise InvalidCredentialsError()
    identifier, separator, password = decoded.partition(":")
    if not separator:
        raise InvalidCredentialsError()
    return identifier, password


# Registration and sign-in

@router.post("/sign-up", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@public_limiter.limit("5/minute")
def sign_up(
    request: Request,
    data: SignUpRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """
    Create a customer account and email a verification code.
    The password is checked against the full policy and the user's own details.
    """
    username = sanitize_username(data.username)
    display_name = sanitize_display_name(data.display_name)
    email = sanitize_email(data.email)
    if not validate_username(username):
        raise ValidationError("Username must be 3-32 characters of letters, digits, '_', '.' or '-'")
    if not display_name:
        raise ValidationError("Display name is required")

    user = AuthService(db, runtime).register(username, display_name, email, data.password)
    return UserResponse.model_validate(user)


@router.post("/sign-in", response_model=SignInResponse)
@public_limiter.limit("10/minute")
def sign_in(
    request: Request,
    data: Optional[SignInRequest] = Body(None),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """
    Verify credentials from the JSON body or an HTTP Basic header.
    Returns tokens, or a state token when a second factor is required.
    """
    if data is not None:
        identifier, password = data.identifier, data.password
    else:
        credentials = _basic_credentials(request)
        if credentials is None:
            raise InvalidCredentialsError()
        identifier, password = credentials

    client = client_context_from_request(request)
    result = SignInService(db, runtime).sign_in(identifier, password, client)
    return sign_in_response(result)


@router.post("/refresh", response_model=TokenPairResponse)
@public_limiter.limit("30/minute")
def refresh_access_token(
    request: Request,
    data: RefreshTokenRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """
    Rotate a refresh token. The presented token is spent; presenting it
    again revokes the whole token family.
    """
    tokens = TokenService(db, runtime).refresh(
        data.refresh_token,
        requested_access_ttl=get_requested_access_ttl(request),
    )
    return token_pair_response(tokens)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Sign out this device: the token pair and its session are revoked."""
    _, payload = user_payload
    AuthService(db, runtime).logout(payload)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
def logout_all(
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Sign out everywhere by bumping the token version."""
    current_user, payload = user_payload
    AuthService(db, runtime).logout_everywhere(current_user, payload)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user),
):
    return UserResponse.model_validate(current_user)


# Multi-factor sign-in steps

@router.post("/mfa/select", response_model=SignInResponse)
@public_limiter.limit("20/minute")
def select_mfa_method(
    request: Request,
    data: SelectMFAMethodRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    result = SignInService(db, runtime).select_method(data.state_token, MFAMethod(data.method))
    return sign_in_response(result)


@router.post("/mfa/totp/verify", response_model=SignInResponse)
@public_limiter.limit("10/minute")
def verify_sign_in_totp(
    request: Request,
    data: MFACodeRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    result = SignInService(db, runtime).verify_totp(data.state_token, sanitize_code(data.code))
    return sign_in_response(result)


@router.post("/mfa/email/verify", response_model=SignInResponse)
@public_limiter.limit("10/minute")
def verify_sign_in_email_code(
    request: Request,
    data: MFACodeRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    result = SignInService(db, runtime).verify_email_code(data.state_token, sanitize_code(data.code))
    return sign_in_response(result)


@router.post("/mfa/email/resend", response_model=ResendCodeResponse)
@public_limiter.limit("5/minute")
def resend_sign_in_email_code(
    request: Request,
    data: StateTokenRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    masked_email = SignInService(db, runtime).resend_email_code(data.state_token)
    return ResendCodeResponse(message="Verification code sent", masked_email=masked_email)


@router.post("/mfa/cancel", status_code=status.HTTP_204_NO_CONTENT)
def cancel_sign_in(
    data: StateTokenRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    SignInService(db, runtime).cancel(data.state_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Passwords

@router.post("/password/validate", response_model=PasswordValidationResponse)
@public_limiter.limit("60/minute")
def validate_password_strength(
    request: Request,
    data: ValidatePasswordRequest,
):
    """Run the password policy without storing anything, for live client feedback."""
    personal_info = {
        "username": data.username,
        "display_name": data.display_name,
        "email": data.email,
    }
    result = validate_password(data.password, personal_info)
    return PasswordValidationResponse(
        is_valid=result.is_valid,
        errors=[{"code": e.code, "message": e.message} for e in result.errors],
        strength=result.strength.label,
        strength_score=int(result.strength),
        entropy=round(result.entropy, 2),
        suggestions=list(result.suggestions),
    )


@router.post("/password/change", response_model=MessageResponse)
@limiter.limit("5/minute")
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """
    Change the current user's password.
    Every session, including this one, is signed out.
    """
    current_user, payload = user_payload
    AuthService(db, runtime).change_password(current_user, data.current_password, data.new_password, payload)
    return MessageResponse(message="Password updated successfully. Please sign in again.")


@router.post("/password/forgot", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
@public_limiter.limit("3/minute")
def forgot_password(
    request: Request,
    data: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    AuthService(db, runtime).forgot_password(sanitize_email(data.email))
    return MessageResponse(message="If an account exists for this email, a reset code has been sent.")


@router.post("/password/reset", response_model=MessageResponse)
@public_limiter.limit("5/minute")
def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    AuthService(db, runtime).reset_password(
        sanitize_email(data.email), sanitize_code(data.code), data.new_password
    )
    return MessageResponse(message="Password has been reset. Please sign in.")


# Email address

@router.post("/email/change", response_model=UserResponse)
@limiter.limit("5/minute")
def change_email(
    request: Request,
    data: ChangeEmailRequest,
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Change the address and send a verification code to it. Existing tokens stop working."""
    current_user, payload = user_payload
    user = AuthService(db, runtime).change_email(
        current_user, data.password, sanitize_email(data.new_email), payload
    )
    return UserResponse.model_validate(user)


@router.post(
    "/email-verification/send",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@public_limiter.limit("3/minute")
def send_email_verification(
    request: Request,
    data: EmailVerificationRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    AuthService(db, runtime).send_email_verification(sanitize_email(data.email))
    return MessageResponse(message="If the address needs verification, a code has been sent.")


@router.post("/email-verification/confirm", response_model=UserResponse)
@public_limiter.limit("10/minute")
def confirm_email_verification(
    request: Request,
    data: ConfirmEmailRequest,
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    user = AuthService(db, runtime).confirm_email(sanitize_email(data.email), sanitize_code(data.code))
    return UserResponse.model_validate(user)


# Sessions

@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    current_user, payload = user_payload
    sessions = SessionService(db, runtime).list_sessions(current_user, get_current_session_id(payload))
    return SessionListResponse(
        sessions=[SessionResponse(**s) for s in sessions],
        total=len(sessions),
    )


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_session(
    session_id: UUID,
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    """Sign out one device. Revoking the current session ends this token too."""
    current_user, _ = user_payload
    SessionService(db, runtime).revoke_session(current_user, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/revoke-others", response_model=RevokedSessionsResponse)
def revoke_other_sessions(
    user_payload: tuple[User, dict[str, Any]] = Depends(get_current_user_and_payload),
    db: Session = Depends(get_db),
    runtime: AuthRuntime = Depends(get_auth_runtime),
):
    current_user, payload = user_payload
    revoked = SessionService(db, runtime).revoke_other_sessions(
        current_user, get_current_session_id(payload)
    )
    return RevokedSessionsResponse(revoked=revoked)
