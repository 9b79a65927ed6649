from __future__ import annotations

from datetime import date


class TemporalEngineError(Exception):
    """Base class for every error the temporal engine raises on purpose."""


class CalendarRangeError(TemporalEngineError, ValueError):
    """Date outside the supported Hijri/Gregorian range, or not a date at all."""


class InvalidTimezoneError(TemporalEngineError, ValueError):
    def __init__(self, zone_name):
        self.zone_name = zone_name
        super().__init__(f"Unknown timezone: {zone_name!r}")


class EntryLockedError(TemporalEngineError):
    def __init__(self, gregorian_date: date | str):
        self.gregorian_date = str(gregorian_date)
        super().__init__(f"Entry for {self.gregorian_date} is permanently locked")


class DateOutOfPeriodError(TemporalEngineError, ValueError):
    def __init__(self, gregorian_date: date | str, start_date: str, end_date: str):
        self.gregorian_date = str(gregorian_date)
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Date {self.gregorian_date} is outside period {start_date}..{end_date}"
        )


class NotFoundError(TemporalEngineError, LookupError):
    pass
