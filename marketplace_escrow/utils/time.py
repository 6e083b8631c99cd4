"""Time utilities."""
from datetime import UTC, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from the database as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_local_day(now: datetime, tz_name: str) -> datetime:
    """Return local midnight for ``now`` in ``tz_name``, expressed in UTC."""

    local_now = ensure_utc(now).astimezone(ZoneInfo(tz_name))
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


__all__ = ["utcnow", "ensure_utc", "start_of_local_day"]
