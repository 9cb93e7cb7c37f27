from datetime import datetime, timezone, tzinfo
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(now: Optional[datetime], tz: tzinfo) -> datetime:
    """
    Normalize a caller-supplied clock reading. None means now; naive values
    are wall-clock time in `tz`. Stored timestamps are always aware UTC.
    """
    if now is None:
        return utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    return now.astimezone(timezone.utc)
