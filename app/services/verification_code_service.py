"""Issue and verify 6-digit email codes."""

from datetime import timedelta
from typing import Protocol
import hmac
import logging
import math
import secrets

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    CodeExpiredError,
    CodeMismatchError,
    CodeNotFoundError,
    CooldownActiveError,
    TooManyAttemptsError,
)
from app.core.timeutils import utcnow
from app.models import EmailVerificationCode, User
from app.models.verification_code import (
    CODE_TYPE_EMAIL_VERIFY,
    CODE_TYPE_MFA_ENABLE,
    CODE_TYPE_MFA_SIGN_IN,
    CODE_TYPE_PASSWORD_RESET,
)

logger = logging.getLogger(__name__)


class CodeGenerator(Protocol):
    def generate(self) -> str:
        ...


class SecureCodeGenerator:
    """Cryptographically random zero-padded numeric codes."""

    def __init__(self, digits: int = 6):
        self.digits = digits

    def generate(self) -> str:
        return f"{secrets.randbelow(10 ** self.digits):0{self.digits}d}"


def max_attempts_for(code_type: str) -> int:
    """Attempt cap per code type: MFA challenges are stricter than verification and reset."""
    if code_type in (CODE_TYPE_MFA_SIGN_IN, CODE_TYPE_MFA_ENABLE):
        return settings.MFA_CODE_MAX_ATTEMPTS
    if code_type in (CODE_TYPE_EMAIL_VERIFY, CODE_TYPE_PASSWORD_RESET):
        return settings.VERIFICATION_CODE_MAX_ATTEMPTS
    raise ValueError(f"Unknown verification code type: {code_type}")


class VerificationCodeService:
    """
    One live code per (user, type). Every read-modify-write of a row runs
    under the per-pair lock from the auth runtime, so parallel attempts
    cannot both slip under the attempt cap.
    """

    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime

    def _lock_key(self, user: User, code_type: str) -> str:
        return f"code:{user.id}:{code_type}"

    def _get_row(self, user: User, code_type: str) -> EmailVerificationCode | None:
        return (
            self.db.query(EmailVerificationCode)
            .filter(
                EmailVerificationCode.user_id == user.id,
                EmailVerificationCode.type == code_type,
            )
            .with_for_update()
            .first()
        )

    def issue(self, user: User, code_type: str) -> str:
        """
        Create or replace the code for (user, type) and return it in plaintext.
        Raises CooldownActiveError if the previous code is too recent and
        still has attempts left; an exhausted code can be replaced at once.
        """
        cap = max_attempts_for(code_type)
        cooldown = settings.VERIFICATION_CODE_COOLDOWN_SECONDS

        with self.runtime.locks.hold(self._lock_key(user, code_type)):
            now = utcnow()
            row = self._get_row(user, code_type)

            if row is not None and row.attempts < cap:
                elapsed = (now - row.last_requested_at).total_seconds()
                if elapsed < cooldown:
                    self.db.rollback()
                    raise CooldownActiveError(math.ceil(cooldown - elapsed))

            code = self.runtime.code_generator.generate()
            expires_at = now + timedelta(seconds=settings.VERIFICATION_CODE_EXPIRE_SECONDS)

            if row is None:
                row = EmailVerificationCode(user_id=user.id, type=code_type)
                self.db.add(row)
            row.code = code
            row.attempts = 0
            row.expires_at = expires_at
            row.last_requested_at = now
            self.db.commit()

        logger.info(f"Issued {code_type} code for user {user.id}")
        return code

    def verify(self, user: User, code_type: str, code: str) -> None:
        """
        Check a submitted code and consume it on success.

        The attempt cap is checked before anything else, so once it is
        reached even the correct code is refused. A mismatch is committed
        before the error propagates.
        """
        cap = max_attempts_for(code_type)

        with self.runtime.locks.hold(self._lock_key(user, code_type)):
            row = self._get_row(user, code_type)
            if row is None:
                self.db.rollback()
                raise CodeNotFoundError()

            if row.attempts >= cap:
                self.db.rollback()
                logger.warning(f"{code_type} code attempts exhausted for user {user.id}")
                raise TooManyAttemptsError()

            if row.is_expired():
                self.db.rollback()
                raise CodeExpiredError()

            if not hmac.compare_digest(row.code.encode(), (code or "").strip().encode()):
                row.attempts += 1
                remaining = max(0, cap - row.attempts)
                self.db.commit()
                logger.info(f"{code_type} code mismatch for user {user.id} ({remaining} attempts left)")
                raise CodeMismatchError(remaining)

            self.db.delete(row)
            self.db.commit()

        logger.info(f"Verified {code_type} code for user {user.id}")

    def discard(self, user: User, code_type: str) -> None:
        with self.runtime.locks.hold(self._lock_key(user, code_type)):
            self.db.query(EmailVerificationCode).filter(
                EmailVerificationCode.user_id == user.id,
                EmailVerificationCode.type == code_type,
            ).delete()
            self.db.commit()

    @staticmethod
    def purge_expired(db: Session, grace: timedelta = timedelta(hours=1)) -> int:
        """Delete codes that expired more than ``grace`` ago."""
        cutoff = utcnow() - grace
        deleted = db.query(EmailVerificationCode).filter(
            EmailVerificationCode.expires_at < cutoff
        ).delete()
        db.commit()
        return deleted
