"""Clock helpers. All persisted timestamps are naive UTC."""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_from(start: datetime, seconds: float) -> datetime:
    return start + timedelta(seconds=seconds)


def isoformat_or_none(value):
    return value.isoformat() if value else None
