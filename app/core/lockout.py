"""Failure counting and temporary lockout, keyed by an arbitrary identifier."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging
import math
import threading

from app.core.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class _FailureRecord:
    count: int
    first_failure_at: datetime
    last_failure_at: datetime
    locked_until: Optional[datetime] = None


class LockoutTracker:
    """
    Counts consecutive failures per key and locks the key once the count
    reaches ``max_failures`` within ``window``.

    State lives in process memory and is lost on restart.
    """

    def __init__(self, max_failures: int = 5, window: timedelta = timedelta(minutes=15)):
        self.max_failures = max_failures
        self.window = window
        self._records: dict[str, _FailureRecord] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize(key: str) -> str:
        return key.strip().lower()

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` unlocks, or 0 if it is not locked."""
        key = self.normalize(key)
        now = utcnow()
        with self._lock:
            record = self._records.get(key)
            if record is None or record.locked_until is None:
                return 0
            if record.locked_until <= now:
                # Lock elapsed: start over with a clean counter
                del self._records[key]
                return 0
            return max(1, math.ceil((record.locked_until - now).total_seconds()))

    def is_locked(self, key: str) -> bool:
        return self.retry_after(key) > 0

    def record_failure(self, key: str) -> int:
        """
        Record one failure. Returns the remaining seconds of lockout if this
        failure locked the key, otherwise 0.
        """
        key = self.normalize(key)
        now = utcnow()
        with self._lock:
            record = self._records.get(key)
            if record is None or now - record.last_failure_at > self.window:
                record = _FailureRecord(count=0, first_failure_at=now, last_failure_at=now)
                self._records[key] = record

            record.count += 1
            record.last_failure_at = now
            if record.count >= self.max_failures and record.locked_until is None:
                record.locked_until = now + self.window
                logger.warning(f"Lockout engaged after {record.count} failures")
                return math.ceil(self.window.total_seconds())
            return 0

    def failures(self, key: str) -> int:
        with self._lock:
            record = self._records.get(self.normalize(key))
            return record.count if record else 0

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(self.normalize(key), None)

    def decay(self) -> int:
        """Drop records whose lock has elapsed or whose failures are stale."""
        now = utcnow()
        with self._lock:
            stale = [
                key for key, record in self._records.items()
                if (record.locked_until is not None and record.locked_until <= now)
                or (record.locked_until is None and now - record.last_failure_at > self.window)
            ]
            for key in stale:
                del self._records[key]
        return len(stale)
