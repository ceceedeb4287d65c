"""Email one-time codes as a second factor."""

import logging

from sqlalchemy.orm import Session

from app.core.exceptions import AlreadyExistsError, InvalidCredentialsError, ValidationError
from app.models import User
from app.models.verification_code import CODE_TYPE_MFA_ENABLE
from app.services.recovery_code_service import RecoveryCodeService
from app.services.user_service import UserService
from app.services.verification_code_service import VerificationCodeService

logger = logging.getLogger(__name__)


class EmailMFAService:
    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime
        self.codes = VerificationCodeService(db, runtime)

    def _send_enable_code(self, user: User) -> None:
        code = self.codes.issue(user, CODE_TYPE_MFA_ENABLE)
        self.runtime.notifier.send_verification_code(user.email, code, CODE_TYPE_MFA_ENABLE)

    def enable(self, user: User) -> None:
        """Start enablement by emailing a confirmation code."""
        if user.email_mfa_enabled:
            raise AlreadyExistsError("Email MFA", detail="Email MFA is already enabled")
        if not user.email_verified:
            raise ValidationError("Verify your email address before enabling email MFA")
        self._send_enable_code(user)

    def resend(self, user: User) -> None:
        if user.email_mfa_enabled:
            raise AlreadyExistsError("Email MFA", detail="Email MFA is already enabled")
        self._send_enable_code(user)

    def verify(self, user: User, code: str) -> None:
        if user.email_mfa_enabled:
            raise AlreadyExistsError("Email MFA", detail="Email MFA is already enabled")
        self.codes.verify(user, CODE_TYPE_MFA_ENABLE, code)
        user.email_mfa_enabled = True
        UserService.bump_token_version(user)
        self.db.commit()

        self.runtime.sign_in_states.discard_for_user(user.id)
        logger.info(f"Email MFA enabled for user {user.id}")

    def disable(self, user: User, password: str) -> None:
        if not UserService.check_password(user, password):
            raise InvalidCredentialsError("Invalid password")
        if not user.email_mfa_enabled:
            raise ValidationError("Email MFA is not enabled")

        user.email_mfa_enabled = False
        UserService.bump_token_version(user)
        if not user.mfa_enabled:
            RecoveryCodeService(self.db, self.runtime).delete_unused(user)
        self.db.commit()

        self.runtime.sign_in_states.discard_for_user(user.id)
        logger.info(f"Email MFA disabled for user {user.id}")

    def status(self, user: User) -> dict:
        return {
            "enabled": bool(user.email_mfa_enabled),
            "email_verified": bool(user.email_verified),
        }
