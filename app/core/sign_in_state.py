"""
Pending sign-in states.

A partially authenticated sign-in is represented by one of four frozen
variants and stored server-side behind an opaque random handle. The handle
is the "state token" returned to the client; it carries no data itself.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union
from uuid import UUID
import secrets
import threading

from app.core.device import ClientContext
from app.core.exceptions import InvalidStateTokenError
from app.core.timeutils import utcnow


class MFAMethod(str, Enum):
    TOTP = "totp"
    EMAIL = "email"
    RECOVERY_CODE = "recovery_code"


@dataclass(frozen=True)
class AwaitingMFASelection:
    user_id: UUID
    token_version: int
    client: ClientContext
    available_methods: tuple[MFAMethod, ...]


@dataclass(frozen=True)
class AwaitingTOTP:
    user_id: UUID
    token_version: int
    client: ClientContext
    failed_attempts: int = 0


@dataclass(frozen=True)
class AwaitingEmailCode:
    user_id: UUID
    token_version: int
    client: ClientContext
    masked_email: str


@dataclass(frozen=True)
class AwaitingRecoveryCode:
    user_id: UUID
    token_version: int
    client: ClientContext


PendingSignIn = Union[AwaitingMFASelection, AwaitingTOTP, AwaitingEmailCode, AwaitingRecoveryCode]

ANY_PENDING_STATE = (AwaitingMFASelection, AwaitingTOTP, AwaitingEmailCode, AwaitingRecoveryCode)


@dataclass(frozen=True)
class _StoredState:
    state: PendingSignIn
    expires_at: datetime


class SignInStateStore:
    """Mutex-guarded map of state token -> pending sign-in, bounded by a TTL."""

    def __init__(self, ttl: timedelta = timedelta(minutes=5)):
        self.ttl = ttl
        self._states: dict[str, _StoredState] = {}
        self._lock = threading.Lock()

    def create(self, state: PendingSignIn) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._states[token] = _StoredState(state=state, expires_at=utcnow() + self.ttl)
        return token

    def get(self, token: Optional[str], *expected: type) -> PendingSignIn:
        """
        Resolve a state token. Raises InvalidStateTokenError if it is unknown,
        expired, or not one of the ``expected`` variants.
        """
        if not token:
            raise InvalidStateTokenError()

        now = utcnow()
        with self._lock:
            stored = self._states.get(token)
            if stored is None:
                raise InvalidStateTokenError()
            if stored.expires_at <= now:
                del self._states[token]
                raise InvalidStateTokenError()

        if expected and not isinstance(stored.state, expected):
            raise InvalidStateTokenError()
        return stored.state

    def update(self, token: str, state: PendingSignIn) -> None:
        """Swap the state behind ``token``, keeping its original expiry."""
        with self._lock:
            stored = self._states.get(token)
            if stored is None:
                raise InvalidStateTokenError()
            self._states[token] = replace(stored, state=state)

    def consume(self, token: str) -> Optional[PendingSignIn]:
        with self._lock:
            stored = self._states.pop(token, None)
        return stored.state if stored else None

    def discard_for_user(self, user_id: UUID) -> int:
        with self._lock:
            doomed = [token for token, stored in self._states.items() if stored.state.user_id == user_id]
            for token in doomed:
                del self._states[token]
        return len(doomed)

    def sweep(self) -> int:
        now = utcnow()
        with self._lock:
            expired = [token for token, stored in self._states.items() if stored.expires_at <= now]
            for token in expired:
                del self._states[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
