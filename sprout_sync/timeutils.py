"""UTC time helpers.

Timestamps are kept as naive UTC datetimes inside the process and the local
store, and converted to timezone-aware values only at the wire boundary.
"""
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_z(value: datetime) -> str:
    """Format as ISO-8601 with a ``Z`` suffix."""
    return as_utc(value).isoformat().replace("+00:00", "Z")


def next_modification_time(previous: datetime | None, now: datetime) -> datetime:
    """Return a stamp strictly later than ``previous``.

    A clock that has not advanced (or went backwards) still yields an
    increasing value.
    """
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now
