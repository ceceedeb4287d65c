"""Custom exceptions and error handling for the auth API."""

from typing import Any, Optional

from fastapi import HTTPException, status


class AuthAPIException(HTTPException):
    """Base exception for the auth API.

    ``extra`` fields are merged into the rendered error body next to the
    message and code.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: Optional[dict[str, str]] = None,
        extra: Optional[dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.extra = extra or {}


# Authentication Errors (401, 403)
class InvalidCredentialsError(AuthAPIException):
    """Raised when sign-in credentials are invalid.

    The message never says whether the account exists.
    """

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CREDENTIALS",
        )


class TokenError(AuthAPIException):
    """Base for every token validation failure.

    All subclasses render identically at the HTTP boundary; ``reason``
    tells them apart in logs.
    """

    reason = "invalid"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="TOKEN_INVALID",
            headers={"WWW-Authenticate": "Bearer"},
        )


class TokenExpiredError(TokenError):
    reason = "expired"


class InvalidSignatureError(TokenError):
    reason = "invalid_signature"


class InvalidClaimsError(TokenError):
    reason = "invalid_claims"


class TokenBlacklistedError(TokenError):
    reason = "blacklisted"


class VersionMismatchError(TokenError):
    reason = "version_mismatch"


class TokenReplayedError(TokenError):
    reason = "replay_detected"


class InvalidStateTokenError(AuthAPIException):
    """Raised when a sign-in state token is unknown, expired or in the wrong state."""

    def __init__(self, detail: str = "Sign-in session is invalid or has expired. Please sign in again."):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_STATE_TOKEN",
        )


class ForbiddenError(AuthAPIException):
    """Raised when user lacks permission for an action."""

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN",
        )


# One-time code errors (400, 401)
class CodeNotFoundError(AuthAPIException):
    def __init__(self, detail: str = "No verification code found. Please request a new code."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="CODE_NOT_FOUND",
        )


class CodeExpiredError(AuthAPIException):
    def __init__(self, detail: str = "Verification code has expired. Please request a new code."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="CODE_EXPIRED",
        )


class CodeMismatchError(AuthAPIException):
    """Raised when a submitted code is wrong; carries the remaining attempts."""

    def __init__(self, attempts_remaining: int):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid verification code. {attempts_remaining} attempt(s) remaining.",
            error_code="CODE_MISMATCH",
            extra={"attempts_remaining": attempts_remaining},
        )
        self.attempts_remaining = attempts_remaining


class TooManyAttemptsError(AuthAPIException):
    def __init__(self, detail: str = "Too many failed attempts. Please request a new code."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="TOO_MANY_ATTEMPTS",
            extra={"attempts_remaining": 0},
        )


class InvalidCodeError(AuthAPIException):
    """Raised when a TOTP or recovery code does not verify."""

    def __init__(self, detail: str = "Invalid code"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CODE",
        )


class InvalidFormatError(AuthAPIException):
    def __init__(self, detail: str = "Invalid recovery code format"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="INVALID_FORMAT",
        )


class AlreadyUsedError(AuthAPIException):
    def __init__(self, detail: str = "This recovery code has already been used"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="ALREADY_USED",
        )


# Resource Errors (404, 409)
class NotFoundError(AuthAPIException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class AlreadyExistsError(AuthAPIException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="ALREADY_EXISTS",
        )


# Validation Errors (400, 422)
class ValidationError(AuthAPIException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )


class WeakPasswordError(AuthAPIException):
    """Raised when a new password fails the password policy."""

    def __init__(self, violations: list[str]):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid password: {violations[0]}" if violations else "Invalid password",
            error_code="WEAK_PASSWORD",
            extra={"violations": violations},
        )
        self.violations = violations


# Rate Limiting (429)
class AccountLockedError(AuthAPIException):
    """Raised while an identifier is locked out after repeated failures."""

    def __init__(self, retry_after: int):
        retry_after = max(1, retry_after)
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Account temporarily locked. Try again in {retry_after} seconds.",
            error_code="ACCOUNT_LOCKED",
            headers={"Retry-After": str(retry_after)},
            extra={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class CooldownActiveError(AuthAPIException):
    """Raised when a code is re-requested before the resend cooldown elapses."""

    def __init__(self, retry_after: int):
        retry_after = max(1, retry_after)
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Please wait {retry_after} seconds before requesting a new code.",
            error_code="COOLDOWN_ACTIVE",
            headers={"Retry-After": str(retry_after)},
            extra={"retry_after": retry_after},
        )
        self.retry_after = retry_after


# Server Errors (500)
class InternalServerError(AuthAPIException):
    """Raised for unexpected server errors."""

    def __init__(self, detail: str = "An unexpected error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTERNAL_ERROR",
        )


class AlreadyBlacklistedError(Exception):
    """Internal replay signal raised by the token blacklist."""

    def __init__(self, jti: str):
        super().__init__(f"Token {jti} is already blacklisted")
        self.jti = jti
