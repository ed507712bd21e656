"""UTC-only time helpers. Naive datetimes are rejected, never guessed at."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current time in UTC. Use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Same instant expressed in UTC.

    Raises:
        ValueError: dt is naive
    """
    if dt.tzinfo is None:
        raise ValueError(f"naive datetime {dt.isoformat()} has no timezone; attach one first")
    return dt.astimezone(timezone.utc)


def from_timestamp(seconds: int | float) -> datetime:
    """Unix seconds (a JWT exp/iat claim) to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_timestamp(dt: datetime) -> int:
    """Aware datetime to whole Unix seconds, truncating fractions."""
    return int(to_utc(dt).timestamp())


def seconds_until(moment: datetime, now: datetime | None = None) -> int:
    """Whole seconds from now until moment; 0 once it has passed."""
    remaining = (to_utc(moment) - (now or now_utc())).total_seconds()
    return max(int(remaining), 0)
