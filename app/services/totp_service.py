"""Authenticator-app (TOTP) second factor."""

import logging

import pyotp
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_secret, encrypt_secret
from app.core.exceptions import (
    AlreadyExistsError,
    InvalidCodeError,
    InvalidCredentialsError,
    ValidationError,
)
from app.models import User
from app.services.recovery_code_service import RecoveryCodeService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

# One 30-second step either side of now
TOTP_VALID_WINDOW = 1


def _verify_code(secret: str, code: str) -> bool:
    code = (code or "").strip().replace(" ", "")
    if not secret or len(code) != 6 or not code.isdigit():
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=TOTP_VALID_WINDOW)


class TOTPService:
    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime

    def setup(self, user: User) -> dict:
        """Create a pending secret. TOTP stays disabled until a code is confirmed."""
        if user.totp_mfa_enabled:
            raise AlreadyExistsError("TOTP", detail="TOTP is already enabled")

        secret = pyotp.random_base32(length=32)
        user.totp_pending_secret = encrypt_secret(secret)
        self.db.commit()

        provisioning_uri = pyotp.TOTP(secret).provisioning_uri(
            name=user.email,
            issuer_name=settings.TOTP_ISSUER,
        )
        logger.info(f"TOTP setup started for user {user.id}")
        return {
            "secret": secret,
            "provisioning_uri": provisioning_uri,
            "issuer": settings.TOTP_ISSUER,
        }

    def verify_and_enable(self, user: User, code: str) -> None:
        """
        Confirm the pending secret and turn TOTP on. Tokens issued before
        the second factor existed stop working.
        """
        if user.totp_mfa_enabled:
            raise AlreadyExistsError("TOTP", detail="TOTP is already enabled")
        if not user.totp_pending_secret:
            raise ValidationError("TOTP setup has not been started")

        secret = decrypt_secret(user.totp_pending_secret)
        if not _verify_code(secret, code):
            raise InvalidCodeError("Invalid TOTP code")

        user.totp_mfa_secret = user.totp_pending_secret
        user.totp_pending_secret = None
        user.totp_mfa_enabled = True
        UserService.bump_token_version(user)
        self.db.commit()

        self.runtime.sign_in_states.discard_for_user(user.id)
        logger.info(f"TOTP enabled for user {user.id}")

    def verify(self, user: User, code: str) -> bool:
        """Steady-state check against the enabled secret."""
        if not user.totp_mfa_enabled or not user.totp_mfa_secret:
            return False
        return _verify_code(decrypt_secret(user.totp_mfa_secret), code)

    def disable(self, user: User, password: str) -> None:
        """
        Turn TOTP off. Bumping the token version also voids every pending
        sign-in for this user, since states carry the version they were
        created with.
        """
        if not UserService.check_password(user, password):
            raise InvalidCredentialsError("Invalid password")
        if not user.totp_mfa_enabled:
            raise ValidationError("TOTP is not enabled")

        user.totp_mfa_enabled = False
        user.totp_mfa_secret = None
        user.totp_pending_secret = None
        UserService.bump_token_version(user)
        if not user.mfa_enabled:
            RecoveryCodeService(self.db, self.runtime).delete_unused(user)
        self.db.commit()

        self.runtime.sign_in_states.discard_for_user(user.id)
        logger.info(f"TOTP disabled for user {user.id}")

    def status(self, user: User) -> dict:
        return {
            "enabled": bool(user.totp_mfa_enabled),
            "pending_setup": bool(user.totp_pending_secret),
        }
