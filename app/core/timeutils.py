from datetime import datetime, timezone
import calendar


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> int:
    """Seconds since the epoch for a naive UTC datetime."""
    return calendar.timegm(value.utctimetuple())


def from_timestamp(value: int) -> datetime:
    """Naive UTC datetime for an epoch timestamp (e.g. a JWT ``exp``)."""
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
