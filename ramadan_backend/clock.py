from __future__ import annotations

from datetime import datetime, timezone


class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a given instant; advance it explicitly."""

    def __init__(self, instant: datetime):
        self._instant = _as_utc(instant)

    def now_utc(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = _as_utc(instant)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


_system_clock = SystemClock()


def get_clock() -> SystemClock:
    return _system_clock
