from typing import Any
import logging

from sqlalchemy.orm import Session

from app.core.exceptions import (
    AlreadyExistsError,
    CooldownActiveError,
    InvalidCredentialsError,
    ValidationError,
)
from app.core.token_blacklist import (
    REASON_PASSWORD_CHANGED,
    REASON_SIGN_OUT,
    REASON_VERSION_CHANGE,
)
from app.models import User
from app.models.verification_code import CODE_TYPE_EMAIL_VERIFY, CODE_TYPE_PASSWORD_RESET
from app.services.recovery_code_service import RecoveryCodeService
from app.services.session_service import SessionService
from app.services.token_service import TokenService
from app.services.user_service import UserService
from app.services.verification_code_service import VerificationCodeService

logger = logging.getLogger(__name__)


class AuthService:
    """Account lifecycle: registration, email verification, password and sign-out."""

    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime
        self.codes = VerificationCodeService(db, runtime)

    def _send_code(self, user: User, code_type: str) -> None:
        code = self.codes.issue(user, code_type)
        self.runtime.notifier.send_verification_code(user.email, code, code_type)

    def register(self, username: str, display_name: str, email: str, password: str) -> User:
        user = UserService.create_user(self.db, username, display_name, email, password)
        self._send_code(user, CODE_TYPE_EMAIL_VERIFY)
        logger.info(f"Registered user {user.id}")
        return user

    # Email verification

    def send_email_verification(self, email: str) -> None:
        """
        Send a verification code. Unknown or already-verified addresses are
        ignored silently so the endpoint cannot be used to probe accounts.
        """
        user = UserService.get_by_email(self.db, email)
        if user is None or user.email_verified:
            return
        self._send_code(user, CODE_TYPE_EMAIL_VERIFY)

    def confirm_email(self, email: str, code: str) -> User:
        user = UserService.get_by_email(self.db, email)
        if user is None:
            raise ValidationError("Invalid email or code")
        if user.email_verified:
            return user
        self.codes.verify(user, CODE_TYPE_EMAIL_VERIFY, code)
        user.email_verified = True
        self.db.commit()
        logger.info(f"Email verified for user {user.id}")
        return user

    # Passwords

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        payload: dict[str, Any],
    ) -> None:
        if not UserService.check_password(user, current_password):
            raise InvalidCredentialsError("Current password is incorrect")

        UserService.set_password(user, new_password)
        UserService.bump_token_version(user)
        self.db.commit()

        SessionService(self.db, self.runtime).revoke_all(user, REASON_PASSWORD_CHANGED)
        TokenService(self.db, self.runtime).revoke_access_token(payload, REASON_PASSWORD_CHANGED)
        self.runtime.sign_in_states.discard_for_user(user.id)
        self.runtime.notifier.send_password_changed(user.email)
        logger.info(f"Password changed for user {user.id}")

    def forgot_password(self, email: str) -> None:
        """Send a reset code if the account exists. Always looks successful."""
        user = UserService.get_by_email(self.db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return
        try:
            self._send_code(user, CODE_TYPE_PASSWORD_RESET)
        except CooldownActiveError:
            logger.info(f"Password reset code for user {user.id} still in cooldown")

    def reset_password(self, email: str, code: str, new_password: str) -> None:
        user = UserService.get_by_email(self.db, email)
        if user is None:
            raise ValidationError("Invalid email or code")

        self.codes.verify(user, CODE_TYPE_PASSWORD_RESET, code)
        UserService.set_password(user, new_password)
        UserService.bump_token_version(user)
        self.db.commit()

        SessionService(self.db, self.runtime).revoke_all(user, REASON_PASSWORD_CHANGED)
        self.runtime.sign_in_states.discard_for_user(user.id)
        self.runtime.lockout.reset(user.email)
        self.runtime.lockout.reset(user.username)
        self.runtime.notifier.send_password_changed(user.email)
        logger.info(f"Password reset for user {user.id}")

    # Email address

    def change_email(self, user: User, password: str, new_email: str, payload: dict[str, Any]) -> User:
        if not UserService.check_password(user, password):
            raise InvalidCredentialsError("Invalid password")

        new_email = new_email.lower()
        if new_email == user.email:
            raise ValidationError("New email must be different from the current email")
        existing = UserService.get_by_email(self.db, new_email)
        if existing is not None:
            raise AlreadyExistsError("User", detail="Email is already registered")

        user.email = new_email
        user.email_verified = False
        if user.email_mfa_enabled:
            # Codes must not go to an unverified address
            user.email_mfa_enabled = False
            if not user.mfa_enabled:
                RecoveryCodeService(self.db, self.runtime).delete_unused(user)
        UserService.bump_token_version(user)
        self.db.commit()

        SessionService(self.db, self.runtime).revoke_all(user, REASON_VERSION_CHANGE)
        TokenService(self.db, self.runtime).revoke_access_token(payload, REASON_VERSION_CHANGE)
        self.runtime.sign_in_states.discard_for_user(user.id)
        self.codes.discard(user, CODE_TYPE_EMAIL_VERIFY)
        self._send_code(user, CODE_TYPE_EMAIL_VERIFY)
        logger.info(f"Email changed for user {user.id}")
        return user

    # Sign-out

    def logout(self, payload: dict[str, Any]) -> None:
        TokenService(self.db, self.runtime).revoke_access_token(payload, REASON_SIGN_OUT)

    def logout_everywhere(self, user: User, payload: dict[str, Any]) -> int:
        UserService.bump_token_version(user)
        self.db.commit()
        revoked = SessionService(self.db, self.runtime).revoke_all(user, REASON_SIGN_OUT)
        TokenService(self.db, self.runtime).revoke_access_token(payload, REASON_SIGN_OUT)
        self.runtime.sign_in_states.discard_for_user(user.id)
        return revoked
