from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.device import ClientContext
from app.core.exceptions import NotFoundError
from app.core.token_blacklist import REASON_REVOKED
from app.core.timeutils import utcnow
from app.models import LoginSession, User
from app.services.token_service import TokenService

logger = logging.getLogger(__name__)


class SessionService:
    """Per-device login records and their remote revocation."""

    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime
        self.tokens = TokenService(db, runtime)

    def active_sessions(self, user: User) -> list[LoginSession]:
        return (
            self.db.query(LoginSession)
            .filter(LoginSession.user_id == user.id, LoginSession.is_active == True)
            .order_by(LoginSession.last_used_at.desc())
            .all()
        )

    def open_session(self, user: User, client: ClientContext) -> LoginSession:
        """
        Record a new login. If the user already has the maximum number of
        active sessions, the least recently used ones are revoked.

        Counting and eviction run under the user's lock, so concurrent
        sign-ins cannot each count the other's new session and evict too much.
        """
        with self.runtime.locks.hold(f"user:{user.id}"):
            now = utcnow()
            session = LoginSession(
                user_id=user.id,
                device_name=client.device_name,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                is_active=True,
                created_at=now,
                last_used_at=now,
            )
            self.db.add(session)
            self.db.flush()

            active = self.active_sessions(user)
            for stale in [s for s in active if s.id != session.id][settings.MAX_ACTIVE_SESSIONS - 1:]:
                logger.info(f"Session limit reached for user {user.id}, revoking session {stale.id}")
                self.tokens.revoke_session(stale, REASON_REVOKED)

            self.db.commit()
        return session

    def list_sessions(self, user: User, current_session_id: Optional[UUID]) -> list[dict]:
        return [
            {
                "id": s.id,
                "device_name": s.device_name,
                "ip_address": s.ip_address,
                "user_agent": s.user_agent,
                "created_at": s.created_at,
                "last_used_at": s.last_used_at,
                "is_current": s.id == current_session_id,
            }
            for s in self.active_sessions(user)
        ]

    def revoke_session(self, user: User, session_id: UUID) -> None:
        session = self.db.query(LoginSession).filter(
            LoginSession.id == session_id,
            LoginSession.user_id == user.id,
            LoginSession.is_active == True,
        ).first()
        if session is None:
            raise NotFoundError("Session")
        self.tokens.revoke_session(session, REASON_REVOKED)

    def revoke_other_sessions(self, user: User, current_session_id: Optional[UUID]) -> int:
        others = [s for s in self.active_sessions(user) if s.id != current_session_id]
        for session in others:
            self.tokens.revoke_session(session, REASON_REVOKED)
        return len(others)

    def revoke_all(self, user: User, reason: str = REASON_REVOKED) -> int:
        sessions = self.active_sessions(user)
        for session in sessions:
            self.tokens.revoke_session(session, reason)
        return len(sessions)
