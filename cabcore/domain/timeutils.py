"""Clock and timezone helpers shared by the pricing and booking rules."""

from datetime import datetime, timezone, tzinfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime, default_tz: tzinfo = timezone.utc) -> datetime:
    """Attach *default_tz* to a naive datetime; aware values pass through."""
    if moment.tzinfo is None or moment.tzinfo.utcoffset(moment) is None:
        return moment.replace(tzinfo=default_tz)
    return moment


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
