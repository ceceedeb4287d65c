"""
Multi-step sign-in.

    AwaitingCredentials -> CredentialsVerified
        -> AwaitingMFASelection | AwaitingTOTP | AwaitingEmailCode | AwaitingRecoveryCode
        -> Authenticated

Partially authenticated attempts live in the runtime's ``SignInStateStore``
behind an opaque state token. Each completion step resolves the token to
one of the expected variants, verifies its factor and either consumes the
state and issues tokens or leaves the state in place for another try.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.device import ClientContext
from app.core.exceptions import (
    AccountLockedError,
    CooldownActiveError,
    InvalidCodeError,
    InvalidCredentialsError,
    InvalidStateTokenError,
    TooManyAttemptsError,
    ValidationError,
)
from app.core.lockout import LockoutTracker
from app.core.security import burn_password_check
from app.core.sign_in_state import (
    ANY_PENDING_STATE,
    AwaitingEmailCode,
    AwaitingMFASelection,
    AwaitingRecoveryCode,
    AwaitingTOTP,
    MFAMethod,
    PendingSignIn,
)
from app.core.timeutils import utcnow
from app.models import User
from app.models.verification_code import CODE_TYPE_MFA_SIGN_IN
from app.services.recovery_code_service import RecoveryCodeService
from app.services.session_service import SessionService
from app.services.token_service import IssuedTokens, TokenService
from app.services.totp_service import TOTPService
from app.services.user_service import UserService
from app.services.verification_code_service import VerificationCodeService

logger = logging.getLogger(__name__)

RECOVERY_CODE_DEVICE_NAME = "Recovery Code Sign In"


class SignInStatus(str, Enum):
    SUCCESS = "SUCCESS"
    MFA_REQUIRED = "MFA_REQUIRED"
    MFA_TOTP_REQUIRED = "MFA_TOTP_REQUIRED"
    MFA_EMAIL_REQUIRED = "MFA_EMAIL_REQUIRED"
    MFA_RECOVERY_REQUIRED = "MFA_RECOVERY_REQUIRED"


@dataclass(frozen=True)
class SignInResult:
    status: SignInStatus
    user: User
    tokens: Optional[IssuedTokens] = None
    state_token: Optional[str] = None
    available_methods: tuple[MFAMethod, ...] = ()
    masked_email: Optional[str] = None


def mask_email(email: str) -> str:
    """``jane.doe@example.com`` -> ``ja******@example.com``."""
    if "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    visible = local[:2] if len(local) > 2 else local[:1]
    return f"{visible}{'*' * max(3, len(local) - len(visible))}@{domain}"


class SignInService:
    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime
        self.states = runtime.sign_in_states

    # Step 1: credentials

    def sign_in(self, identifier: str, password: str, client: ClientContext) -> SignInResult:
        """
        Verify credentials and decide the next step.

        Unknown identifiers and wrong passwords fail identically and both
        count toward the identifier's lockout. Attempts for one identifier
        are checked and counted one at a time, so concurrent guesses cannot
        all slip past the lockout before any failure is recorded.
        """
        identifier = (identifier or "").strip()
        if not identifier or not password:
            raise InvalidCredentialsError()

        with self.runtime.locks.hold(f"sign-in:{LockoutTracker.normalize(identifier)}"):
            user = self._check_credentials(identifier, password, client)
        return self._after_password(user, client)

    def _check_credentials(self, identifier: str, password: str, client: ClientContext) -> User:
        retry_after = self.runtime.lockout.retry_after(identifier)
        if retry_after:
            logger.warning(f"Sign-in attempt for locked identifier from {client.ip_address}")
            raise AccountLockedError(retry_after)

        user = UserService.get_by_identifier(self.db, identifier)
        if user is None or not user.password_hash:
            burn_password_check(password)
            self._record_failure(identifier, client)
            raise InvalidCredentialsError()

        if not UserService.check_password(user, password):
            self._record_failure(identifier, client)
            raise InvalidCredentialsError()

        self.runtime.lockout.reset(identifier)
        return user

    def _record_failure(self, identifier: str, client: ClientContext) -> None:
        locked_for = self.runtime.lockout.record_failure(identifier)
        logger.info(f"Failed sign-in from {client.ip_address}")
        if locked_for:
            logger.warning(f"Identifier locked for {locked_for}s after repeated failures from {client.ip_address}")

    def _available_methods(self, user: User) -> tuple[MFAMethod, ...]:
        methods = []
        if user.totp_mfa_enabled:
            methods.append(MFAMethod.TOTP)
        if user.email_mfa_enabled:
            methods.append(MFAMethod.EMAIL)
        if methods and RecoveryCodeService(self.db, self.runtime).has_valid_codes(user):
            methods.append(MFAMethod.RECOVERY_CODE)
        return tuple(methods)

    def _after_password(self, user: User, client: ClientContext) -> SignInResult:
        if user.totp_mfa_enabled and user.email_mfa_enabled:
            methods = self._available_methods(user)
            token = self.states.create(AwaitingMFASelection(
                user_id=user.id,
                token_version=user.token_version,
                client=client,
                available_methods=methods,
            ))
            return SignInResult(
                status=SignInStatus.MFA_REQUIRED,
                user=user,
                state_token=token,
                available_methods=methods,
                masked_email=mask_email(user.email),
            )

        if user.totp_mfa_enabled:
            token = self.states.create(AwaitingTOTP(
                user_id=user.id,
                token_version=user.token_version,
                client=client,
            ))
            return SignInResult(
                status=SignInStatus.MFA_TOTP_REQUIRED,
                user=user,
                state_token=token,
                available_methods=self._available_methods(user),
            )

        if user.email_mfa_enabled:
            token = self.states.create(self._email_state(user, client))
            self._send_sign_in_code(user)
            return SignInResult(
                status=SignInStatus.MFA_EMAIL_REQUIRED,
                user=user,
                state_token=token,
                available_methods=self._available_methods(user),
                masked_email=mask_email(user.email),
            )

        return self.complete(user, client)

    def _email_state(self, user: User, client: ClientContext) -> AwaitingEmailCode:
        return AwaitingEmailCode(
            user_id=user.id,
            token_version=user.token_version,
            client=client,
            masked_email=mask_email(user.email),
        )

    def _send_sign_in_code(self, user: User) -> None:
        try:
            code = VerificationCodeService(self.db, self.runtime).issue(user, CODE_TYPE_MFA_SIGN_IN)
        except CooldownActiveError as e:
            # The previous code is still valid; the client can resend after the cooldown
            logger.info(f"Sign-in code for user {user.id} not reissued, cooldown {e.retry_after}s")
            return
        self.runtime.notifier.send_verification_code(user.email, code, CODE_TYPE_MFA_SIGN_IN)

    # Step 2: method selection

    def select_method(self, state_token: str, method: MFAMethod) -> SignInResult:
        state, user = self._resolve(state_token, AwaitingMFASelection)
        if method not in state.available_methods:
            raise ValidationError(f"MFA method '{method.value}' is not available for this account")

        if method == MFAMethod.TOTP:
            self.states.update(state_token, AwaitingTOTP(
                user_id=user.id,
                token_version=state.token_version,
                client=state.client,
            ))
            status = SignInStatus.MFA_TOTP_REQUIRED
        elif method == MFAMethod.EMAIL:
            self.states.update(state_token, self._email_state(user, state.client))
            self._send_sign_in_code(user)
            status = SignInStatus.MFA_EMAIL_REQUIRED
        else:
            self.states.update(state_token, AwaitingRecoveryCode(
                user_id=user.id,
                token_version=state.token_version,
                client=state.client,
            ))
            status = SignInStatus.MFA_RECOVERY_REQUIRED

        return SignInResult(
            status=status,
            user=user,
            state_token=state_token,
            available_methods=state.available_methods,
            masked_email=mask_email(user.email) if method == MFAMethod.EMAIL else None,
        )

    # Step 3: factor verification

    def verify_totp(self, state_token: str, code: str) -> SignInResult:
        with self.runtime.locks.hold(f"state:{state_token}"):
            state, user = self._resolve(state_token, AwaitingTOTP)

            if not TOTPService(self.db, self.runtime).verify(user, code):
                failures = state.failed_attempts + 1
                if failures >= settings.MAX_TOTP_SIGN_IN_ATTEMPTS:
                    self.states.consume(state_token)
                    logger.warning(f"TOTP sign-in attempts exhausted for user {user.id}")
                    raise TooManyAttemptsError("Too many invalid codes. Please sign in again.")
                self.states.update(state_token, replace(state, failed_attempts=failures))
                raise InvalidCodeError("Invalid TOTP code")

            self.states.consume(state_token)
            return self.complete(user, state.client)

    def verify_email_code(self, state_token: str, code: str) -> SignInResult:
        with self.runtime.locks.hold(f"state:{state_token}"):
            state, user = self._resolve(state_token, AwaitingEmailCode)
            try:
                VerificationCodeService(self.db, self.runtime).verify(user, CODE_TYPE_MFA_SIGN_IN, code)
            except TooManyAttemptsError:
                self.states.consume(state_token)
                raise

            self.states.consume(state_token)
            return self.complete(user, state.client)

    def resend_email_code(self, state_token: str) -> str:
        state, user = self._resolve(state_token, AwaitingEmailCode)
        code = VerificationCodeService(self.db, self.runtime).issue(user, CODE_TYPE_MFA_SIGN_IN)
        self.runtime.notifier.send_verification_code(user.email, code, CODE_TYPE_MFA_SIGN_IN)
        return state.masked_email

    def verify_recovery_code(self, state_token: str, code: str) -> SignInResult:
        """Recovery codes complete any pending MFA step (lost-device fallback)."""
        with self.runtime.locks.hold(f"state:{state_token}"):
            state, user = self._resolve(state_token, *ANY_PENDING_STATE)
            client = state.client
            RecoveryCodeService(self.db, self.runtime).verify(
                user, code, ip_address=client.ip_address, user_agent=client.user_agent
            )

            self.states.consume(state_token)
            return self.complete(user, replace(client, device_name=RECOVERY_CODE_DEVICE_NAME))

    def cancel(self, state_token: str) -> None:
        if self.states.consume(state_token) is None:
            raise InvalidStateTokenError()

    # Shared

    def _resolve(self, state_token: str, *expected: type) -> tuple[PendingSignIn, User]:
        """
        Load a pending state and its user. A state whose token version no
        longer matches the user (MFA disabled, password changed) is dropped.
        """
        state = self.states.get(state_token, *expected)
        user = UserService.get_by_id(self.db, state.user_id)
        if user is None or user.token_version != state.token_version:
            self.states.consume(state_token)
            raise InvalidStateTokenError()
        return state, user

    def complete(self, user: User, client: ClientContext) -> SignInResult:
        """Open a session and issue the first token pair of a new family."""
        session = SessionService(self.db, self.runtime).open_session(user, client)
        user.last_sign_in_at = utcnow()
        tokens = TokenService(self.db, self.runtime).issue(
            user, session, requested_access_ttl=client.requested_access_ttl
        )
        logger.info(f"User {user.id} signed in from {client.ip_address} ({client.device_name})")
        return SignInResult(status=SignInStatus.SUCCESS, user=user, tokens=tokens)
