"""MFA recovery codes: single-use backup credentials issued in batches."""

from datetime import timedelta
from typing import Optional
import logging
import re
import secrets

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AlreadyUsedError,
    CodeExpiredError,
    InvalidCodeError,
    InvalidCredentialsError,
    InvalidFormatError,
    TooManyAttemptsError,
    ValidationError,
)
from app.core.security import recovery_code_context
from app.core.timeutils import utcnow
from app.models import MFARecoveryCode, User
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


RECOVERY_CODE_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
RECOVERY_CODE_GROUPS = 4
RECOVERY_CODE_GROUP_LENGTH = 4
NORMALIZED_CODE = re.compile(r"^[0-9a-z]{16}$")
REGENERATE_THRESHOLD = 2


def generate_recovery_code() -> str:
    """Random code formatted as ``xxxx-xxxx-xxxx-xxxx``."""
    groups = [
        "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(RECOVERY_CODE_GROUP_LENGTH))
        for _ in range(RECOVERY_CODE_GROUPS)
    ]
    return "-".join(groups)


def normalize_recovery_code(code: str) -> str:
    return re.sub(r"[\s-]", "", code or "").lower()


class RecoveryCodeService:
    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime

    def _codes(self, user: User) -> list[MFARecoveryCode]:
        return (
            self.db.query(MFARecoveryCode)
            .filter(MFARecoveryCode.user_id == user.id)
            .order_by(MFARecoveryCode.created_at.asc(), MFARecoveryCode.id.asc())
            .all()
        )

    def generate(self, user: User) -> list[str]:
        """
        Replace the user's recovery codes with a fresh batch.
        The plaintext codes are returned here and never again.
        """
        if not user.mfa_enabled:
            raise ValidationError("Enable two-factor authentication before generating recovery codes")

        with self.runtime.locks.hold(f"recovery:{user.id}"):
            self.db.query(MFARecoveryCode).filter(MFARecoveryCode.user_id == user.id).delete()

            now = utcnow()
            expires_at = now + timedelta(days=settings.RECOVERY_CODE_VALIDITY_DAYS)
            codes = [generate_recovery_code() for _ in range(settings.RECOVERY_CODE_COUNT)]
            for code in codes:
                self.db.add(MFARecoveryCode(
                    user_id=user.id,
                    code_hash=recovery_code_context.hash(normalize_recovery_code(code)),
                    created_at=now,
                    expires_at=expires_at,
                ))
            self.db.commit()

        self.runtime.recovery_lockout.reset(str(user.id))
        self.runtime.notifier.send_recovery_codes_generated(user.email)
        logger.info(f"Generated {len(codes)} recovery codes for user {user.id}")
        return codes

    def regenerate(self, user: User, password: str) -> list[str]:
        if not UserService.check_password(user, password):
            raise InvalidCredentialsError("Invalid password")
        return self.generate(user)

    def verify(
        self,
        user: User,
        code: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> MFARecoveryCode:
        """
        Consume one recovery code.

        Failures are counted both on the oldest still-usable code and
        against a per-user budget, so cycling through codes does not reset
        the count.
        """
        normalized = normalize_recovery_code(code)
        if not NORMALIZED_CODE.match(normalized):
            raise InvalidFormatError()

        budget_key = str(user.id)
        if self.runtime.recovery_lockout.is_locked(budget_key):
            raise TooManyAttemptsError("Too many failed recovery code attempts. Please try again later.")

        with self.runtime.locks.hold(f"recovery:{user.id}"):
            self.db.expire_all()
            now = utcnow()
            codes = self._codes(user)
            matched = next(
                (row for row in codes if recovery_code_context.verify(normalized, row.code_hash)),
                None,
            )

            if matched is None:
                candidate = next(
                    (row for row in codes if not row.used and not row.is_expired(now)),
                    None,
                )
                if candidate is not None:
                    candidate.failed_attempts += 1
                self.db.commit()
                self.runtime.recovery_lockout.record_failure(budget_key)
                logger.info(f"Recovery code mismatch for user {user.id}")
                raise InvalidCodeError("Invalid recovery code")

            if matched.used:
                self.db.rollback()
                logger.warning(f"Reuse of consumed recovery code for user {user.id}")
                raise AlreadyUsedError()
            if matched.is_expired(now):
                self.db.rollback()
                raise CodeExpiredError("This recovery code has expired")
            if matched.failed_attempts >= settings.RECOVERY_CODE_MAX_FAILED_ATTEMPTS:
                self.db.rollback()
                raise TooManyAttemptsError("This recovery code is locked after too many failed attempts")

            matched.used = True
            matched.used_at = now
            matched.used_from_ip = ip_address
            matched.used_from_user_agent = (user_agent or "")[:512] or None
            self.db.commit()

        self.runtime.recovery_lockout.reset(budget_key)
        self.runtime.notifier.send_recovery_code_used(user.email, ip_address, user_agent)
        logger.info(f"Recovery code used for user {user.id} from {ip_address}")
        return matched

    def has_valid_codes(self, user: User) -> bool:
        now = utcnow()
        return any(not row.used and not row.is_expired(now) for row in self._codes(user))

    def status(self, user: User) -> dict:
        return {
            "enabled": user.mfa_enabled,
            "has_valid_codes": self.has_valid_codes(user),
        }

    def summary(self, user: User) -> dict:
        now = utcnow()
        codes = self._codes(user)
        used = sum(1 for row in codes if row.used)
        expired = sum(1 for row in codes if not row.used and row.is_expired(now))
        valid = [row for row in codes if not row.used and not row.is_expired(now)]
        expirations = [row.expires_at for row in valid if row.expires_at is not None]
        return {
            "total": len(codes),
            "used": used,
            "expired": expired,
            "remaining": len(codes) - used,
            "valid": len(valid),
            "should_regenerate": len(valid) <= REGENERATE_THRESHOLD,
            "next_expiration_date": min(expirations) if expirations else None,
        }

    def delete_unused(self, user: User) -> int:
        """Drop unused codes once no MFA method remains enabled. Does not commit."""
        return self.db.query(MFARecoveryCode).filter(
            MFARecoveryCode.user_id == user.id,
            MFARecoveryCode.used == False,
        ).delete()
