"""
Process-wide auth state with an explicit lifecycle.

``AuthRuntime`` owns every mutable in-memory structure the auth flows share
(blacklist, lockout counters, pending sign-ins, keyed locks) plus the
pluggable code generator and notification sender. It is built once at
startup, stored on ``app.state`` and injected into request handlers.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
import logging

from app.core.config import Settings
from app.core.lockout import LockoutTracker
from app.core.locks import KeyedLocks
from app.core.sign_in_state import SignInStateStore
from app.core.token_blacklist import TokenBlacklist
from app.services.notifications import NotificationSender, build_notification_sender
from app.services.verification_code_service import CodeGenerator, SecureCodeGenerator

logger = logging.getLogger(__name__)


@dataclass
class AuthRuntime:
    blacklist: TokenBlacklist
    lockout: LockoutTracker
    recovery_lockout: LockoutTracker
    sign_in_states: SignInStateStore
    locks: KeyedLocks
    code_generator: CodeGenerator
    notifier: NotificationSender

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        code_generator: Optional[CodeGenerator] = None,
        notifier: Optional[NotificationSender] = None,
    ) -> "AuthRuntime":
        lockout_window = timedelta(minutes=settings.LOCKOUT_MINUTES)
        return cls(
            blacklist=TokenBlacklist(
                max_entries=settings.TOKEN_BLACKLIST_MAX_ENTRIES,
                persist_path=settings.TOKEN_BLACKLIST_PERSIST_PATH,
            ),
            lockout=LockoutTracker(
                max_failures=settings.MAX_FAILED_SIGN_IN_ATTEMPTS,
                window=lockout_window,
            ),
            recovery_lockout=LockoutTracker(
                max_failures=settings.RECOVERY_CODE_USER_FAILURE_BUDGET,
                window=lockout_window,
            ),
            sign_in_states=SignInStateStore(
                ttl=timedelta(minutes=settings.STATE_TOKEN_EXPIRE_MINUTES),
            ),
            locks=KeyedLocks(),
            code_generator=code_generator or SecureCodeGenerator(),
            notifier=notifier or build_notification_sender(settings),
        )

    def start(self) -> None:
        self.blacklist.load()

    def run_maintenance(self) -> dict[str, int]:
        """Sweep expired in-memory state. Each store holds its lock only briefly."""
        result = {
            "blacklist": self.blacklist.cleanup(),
            "lockouts": self.lockout.decay() + self.recovery_lockout.decay(),
            "sign_in_states": self.sign_in_states.sweep(),
            "locks": self.locks.prune(),
        }
        logger.debug(f"Auth maintenance sweep: {result}")
        return result

    def flush(self) -> None:
        self.blacklist.flush()

    def shutdown(self) -> None:
        self.flush()
        logger.info("Auth runtime shut down")
