from __future__ import annotations

from datetime import date, datetime, time, timezone as dt_timezone


class TimezoneUtils:
    """UTC helpers. Timestamps are stored as naive UTC in the database."""

    @staticmethod
    def utc_now() -> datetime:
        """Return the current UTC timestamp (timezone aware)."""
        return datetime.now(dt_timezone.utc)

    @staticmethod
    def utc_now_naive() -> datetime:
        return TimezoneUtils.utc_now().replace(tzinfo=None)

    @staticmethod
    def to_naive_utc(value: datetime | date | None) -> datetime | None:
        """Normalize aware datetimes and plain dates to naive UTC for storage."""
        if value is None:
            return None
        if not isinstance(value, datetime):
            return datetime.combine(value, time.min)
        if value.tzinfo is not None:
            return value.astimezone(dt_timezone.utc).replace(tzinfo=None)
        return value

    @staticmethod
    def isoformat(value: datetime | None) -> str | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt_timezone.utc)
        return value.isoformat()
