"""UTC helpers for timestamps stored in and read back from the database."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (some backends drop tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_unix(ts: int | float | None) -> datetime | None:
    """Convert a provider epoch-seconds timestamp to an aware datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, UTC)
