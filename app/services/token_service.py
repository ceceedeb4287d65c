"""Access/refresh token issuance, rotation and revocation."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID, uuid4
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AlreadyBlacklistedError,
    InvalidClaimsError,
    TokenBlacklistedError,
    TokenError,
    TokenReplayedError,
    VersionMismatchError,
)
from app.core.security import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    create_token,
    decode_token,
)
from app.core.timeutils import from_timestamp, utcnow
from app.core.token_blacklist import (
    REASON_REPLAY_DETECTED,
    REASON_REVOKED,
    REASON_ROTATED,
    REASON_SIGN_OUT,
    REASON_VERSION_CHANGE,
)
from app.models import LoginSession, Token, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    expires_in: int
    session_id: UUID
    family_id: str


def _parse_user_id(payload: dict[str, Any]) -> UUID:
    try:
        return UUID(payload["sub"])
    except (KeyError, ValueError, TypeError):
        raise InvalidClaimsError()


class TokenService:
    """
    Tokens are grouped into families: one family per sign-in, one new
    generation per refresh. Presenting a superseded refresh token revokes
    the whole family.
    """

    def __init__(self, db: Session, runtime):
        self.db = db
        self.runtime = runtime

    @staticmethod
    def access_ttl(requested_seconds: Optional[int] = None) -> timedelta:
        """Access lifetime, optionally shortened by the client within configured bounds."""
        maximum = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        if requested_seconds is None:
            return timedelta(seconds=maximum)
        seconds = max(settings.MIN_ACCESS_TOKEN_EXPIRE_SECONDS, min(requested_seconds, maximum))
        return timedelta(seconds=seconds)

    def issue(
        self,
        user: User,
        session: LoginSession,
        requested_access_ttl: Optional[int] = None,
        family_id: Optional[str] = None,
        parent: Optional[Token] = None,
    ) -> IssuedTokens:
        """Mint and persist a new pair bound to ``session``."""
        now = utcnow()
        access_ttl = self.access_ttl(requested_access_ttl)
        access_expires_at = now + access_ttl
        refresh_expires_at = now + timedelta(hours=settings.REFRESH_TOKEN_EXPIRE_HOURS)
        family_id = family_id or str(uuid4())
        generation = parent.generation + 1 if parent is not None else 0

        claims = {
            "sub": str(user.id),
            "role": user.role,
            "tv": user.token_version,
            "fid": family_id,
            "gen": generation,
            "sid": str(session.id),
        }
        access_token, access_jti = create_token(claims, TOKEN_TYPE_ACCESS, access_expires_at)
        refresh_token, refresh_jti = create_token(claims, TOKEN_TYPE_REFRESH, refresh_expires_at)

        self.db.add(Token(
            user_id=user.id,
            session_id=session.id,
            jti=refresh_jti,
            access_jti=access_jti,
            parent_jti=parent.jti if parent is not None else None,
            family_id=family_id,
            generation=generation,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        ))
        self.db.commit()

        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            expires_in=int(access_ttl.total_seconds()),
            session_id=session.id,
            family_id=family_id,
        )

    def authenticate(self, access_token: str) -> tuple[User, dict[str, Any]]:
        """
        Validate a bearer token for a protected endpoint.
        Returns the live user and the token payload.
        """
        try:
            payload = decode_token(access_token, TOKEN_TYPE_ACCESS)

            if self.runtime.blacklist.is_blacklisted(payload["jti"]):
                raise TokenBlacklistedError()

            user = self.db.query(User).filter(User.id == _parse_user_id(payload)).first()
            if user is None:
                raise InvalidClaimsError()

            if payload.get("tv") != user.token_version:
                raise VersionMismatchError()
        except TokenError as e:
            logger.info(f"Rejected access token: {e.reason}")
            raise

        return user, payload

    def refresh(self, refresh_token: str, requested_access_ttl: Optional[int] = None) -> IssuedTokens:
        """
        Rotate a refresh token into a new pair.

        The whole check-then-mint sequence runs under the family lock, and
        the old jti is claimed with ``blacklist_with_uniqueness``; of several
        concurrent refreshes with the same token exactly one wins and the
        rest trigger family revocation.
        """
        try:
            payload = decode_token(refresh_token, TOKEN_TYPE_REFRESH)
            family_id = payload.get("fid")
            if not family_id:
                raise InvalidClaimsError()

            with self.runtime.locks.hold(f"family:{family_id}"):
                return self._rotate(payload, family_id, requested_access_ttl)
        except TokenError as e:
            logger.info(f"Rejected refresh token: {e.reason}")
            raise

    def _rotate(self, payload: dict[str, Any], family_id: str, requested_access_ttl: Optional[int]) -> IssuedTokens:
        self.db.expire_all()
        row = self.db.query(Token).filter(Token.jti == payload["jti"]).first()
        if row is None or row.family_id != family_id:
            raise InvalidClaimsError()

        if row.is_revoked:
            logger.warning(f"Refresh token replay detected for family {family_id}")
            self.revoke_family(family_id, REASON_REPLAY_DETECTED)
            raise TokenReplayedError()

        if row.generation >= settings.MAX_TOKEN_GENERATIONS:
            self.revoke_family(family_id, REASON_REVOKED)
            raise InvalidClaimsError()

        user = self.db.query(User).filter(User.id == row.user_id).first()
        if user is None:
            raise InvalidClaimsError()
        if payload.get("tv") != user.token_version:
            self.revoke_family(family_id, REASON_VERSION_CHANGE)
            raise VersionMismatchError()

        session = row.session
        if session is None or not session.is_active:
            self.revoke_family(family_id, REASON_REVOKED)
            raise TokenBlacklistedError()

        try:
            self.runtime.blacklist.blacklist_with_uniqueness(
                row.jti, row.refresh_expires_at, REASON_ROTATED
            )
        except AlreadyBlacklistedError:
            logger.warning(f"Refresh token reuse detected for family {family_id}")
            self.revoke_family(family_id, REASON_REPLAY_DETECTED)
            raise TokenReplayedError()

        self.runtime.blacklist.blacklist(row.access_jti, row.access_expires_at, REASON_ROTATED)
        row.is_revoked = True
        row.revoked_reason = REASON_ROTATED
        session.last_used_at = utcnow()

        return self.issue(user, session, requested_access_ttl, family_id=family_id, parent=row)

    def revoke_family(self, family_id: str, reason: str) -> int:
        """Revoke and blacklist every token of a family and end its session."""
        rows = self.db.query(Token).filter(Token.family_id == family_id).all()
        for row in rows:
            self._revoke_row(row, reason)
            if row.session is not None:
                row.session.is_active = False
        self.db.commit()
        if rows:
            logger.info(f"Revoked token family {family_id} ({len(rows)} tokens): {reason}")
        return len(rows)

    def revoke_session(self, session: LoginSession, reason: str) -> None:
        families = {
            family_id for (family_id,) in
            self.db.query(Token.family_id).filter(Token.session_id == session.id).distinct()
        }
        for family_id in families:
            self.revoke_family(family_id, reason)
        session.is_active = False
        self.db.commit()

    def _revoke_row(self, row: Token, reason: str) -> None:
        blacklist = self.runtime.blacklist
        blacklist.blacklist(row.jti, row.refresh_expires_at, reason)
        blacklist.blacklist(row.access_jti, row.access_expires_at, reason)
        if not row.is_revoked:
            row.is_revoked = True
            row.revoked_reason = reason

    def revoke_access_token(self, payload: dict[str, Any], reason: str = REASON_SIGN_OUT) -> None:
        """
        Invalidate the pair behind a presented access token: the access jti,
        its refresh counterpart and the rest of the family.
        """
        row = self.db.query(Token).filter(Token.access_jti == payload["jti"]).first()
        if row is not None:
            self.revoke_family(row.family_id, reason)
        self.runtime.blacklist.blacklist(payload["jti"], from_timestamp(int(payload["exp"])), reason)

    @staticmethod
    def purge_expired(db: Session, grace: timedelta = timedelta(days=1)) -> int:
        """Delete token rows whose refresh token expired more than ``grace`` ago."""
        cutoff = utcnow() - grace
        deleted = db.query(Token).filter(Token.refresh_expires_at < cutoff).delete()
        db.commit()
        return deleted
