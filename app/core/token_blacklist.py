"""In-memory token blacklist keyed by JWT ID."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import heapq
import json
import logging
import os
import threading

from app.core.exceptions import AlreadyBlacklistedError
from app.core.timeutils import from_timestamp, to_timestamp, utcnow

logger = logging.getLogger(__name__)

# Blacklist reasons
REASON_SIGN_OUT = "sign_out"
REASON_VERSION_CHANGE = "version_change"
REASON_PASSWORD_CHANGED = "password_changed"
REASON_REVOKED = "revoked"
REASON_REPLAY_DETECTED = "replay_detected"
REASON_ROTATED = "rotated"
REASON_AUTHENTICATION_CANCELLED = "authentication_cancelled"


@dataclass(frozen=True)
class BlacklistEntry:
    expires_at: datetime
    reason: str


class TokenBlacklist:
    """
    Tracks revoked token IDs until the token would have expired anyway.

    All access goes through a single lock. Capacity is bounded; when full,
    expired entries are swept first and then the entries closest to expiry
    are evicted, since they protect the shortest remaining window.
    """

    def __init__(self, max_entries: int = 10000, persist_path: Optional[str] = None):
        self.max_entries = max_entries
        self.persist_path = persist_path
        self._entries: dict[str, BlacklistEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def blacklist(self, jti: str, expires_at: datetime, reason: str) -> None:
        """Add a token ID. Idempotent; already-expired tokens are ignored."""
        now = utcnow()
        if expires_at <= now:
            return
        with self._lock:
            self._make_room(now)
            self._entries[jti] = BlacklistEntry(expires_at=expires_at, reason=reason)

    def blacklist_with_uniqueness(self, jti: str, expires_at: datetime, reason: str) -> None:
        """
        Add a token ID that must not have been seen before.

        Raises AlreadyBlacklistedError if it is already present. The check and
        the insert happen under one lock, so of several concurrent callers
        exactly one succeeds.
        """
        now = utcnow()
        with self._lock:
            existing = self._entries.get(jti)
            if existing is not None and existing.expires_at > now:
                raise AlreadyBlacklistedError(jti)
            if expires_at <= now:
                return
            self._make_room(now)
            self._entries[jti] = BlacklistEntry(expires_at=expires_at, reason=reason)

    def is_blacklisted(self, jti: str) -> bool:
        now = utcnow()
        with self._lock:
            entry = self._entries.get(jti)
            if entry is None:
                return False
            if entry.expires_at <= now:
                del self._entries[jti]
                return False
            return True

    def reason_for(self, jti: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(jti)
            return entry.reason if entry else None

    def cleanup(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = utcnow()
        with self._lock:
            return self._remove_expired(now)

    def stats(self) -> dict[str, int]:
        now = utcnow()
        with self._lock:
            expired = sum(1 for entry in self._entries.values() if entry.expires_at <= now)
            total = len(self._entries)
        return {"total": total, "active": total - expired, "expired": expired}

    def _remove_expired(self, now: datetime) -> int:
        expired = [jti for jti, entry in self._entries.items() if entry.expires_at <= now]
        for jti in expired:
            del self._entries[jti]
        return len(expired)

    def _make_room(self, now: datetime) -> None:
        if len(self._entries) < self.max_entries:
            return
        removed = self._remove_expired(now)
        if len(self._entries) < self.max_entries:
            logger.info(f"Token blacklist at capacity, swept {removed} expired entries")
            return

        to_evict = max(1, self.max_entries // 10)
        victims = heapq.nsmallest(
            to_evict, self._entries.items(), key=lambda item: item[1].expires_at
        )
        for jti, _ in victims:
            del self._entries[jti]
        logger.warning(f"Token blacklist at capacity, evicted {len(victims)} earliest-expiring entries")

    def load(self) -> int:
        """Load persisted entries, if a persistence path is configured."""
        if not self.persist_path or not os.path.exists(self.persist_path):
            return 0

        with open(self.persist_path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)

        now = utcnow()
        loaded = 0
        with self._lock:
            for jti, item in raw.items():
                expires_at = from_timestamp(int(item["expires_at"]))
                if expires_at <= now:
                    continue
                self._entries[jti] = BlacklistEntry(expires_at=expires_at, reason=item["reason"])
                loaded += 1
        logger.info(f"Loaded {loaded} blacklisted tokens from {self.persist_path}")
        return loaded

    def flush(self) -> int:
        """Write live entries to the persistence path, if configured."""
        if not self.persist_path:
            return 0

        now = utcnow()
        with self._lock:
            snapshot = {
                jti: {"expires_at": to_timestamp(entry.expires_at), "reason": entry.reason}
                for jti, entry in self._entries.items()
                if entry.expires_at > now
            }

        tmp_path = f"{self.persist_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(snapshot, fh)
        os.replace(tmp_path, self.persist_path)
        logger.info(f"Flushed {len(snapshot)} blacklisted tokens to {self.persist_path}")
        return len(snapshot)
