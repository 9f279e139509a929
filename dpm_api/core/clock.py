from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Reloj real, siempre en UTC con tzinfo."""

    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # MySQL/SQLite devuelven datetimes naive; los guardamos siempre en UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
