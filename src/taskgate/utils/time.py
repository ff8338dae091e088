"""Time utilities."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def after_ms(milliseconds: int, now: datetime | None = None) -> datetime:
    """Return the instant ``milliseconds`` after ``now`` (default: the current time)."""
    return (now or utc_now()) + timedelta(milliseconds=milliseconds)


def elapsed_ms(started: float, finished: float) -> int:
    """Convert a pair of ``time.perf_counter()`` readings to whole milliseconds."""
    return max(0, int(round((finished - started) * 1000.0)))
