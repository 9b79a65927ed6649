"""Tabular (arithmetic) Hijri calendar.

Uses the civil epoch of 1 Muharram 1 AH = Friday 16 July 622 (Julian), with the
30-year leap cycle in which years 2, 5, 7, 10, 13, 16, 18, 21, 24, 26 and 29 add a
day to Dhu al-Hijjah. Odd months have 30 days, even months 29.

All conversions go through proleptic Gregorian ordinals (``date.toordinal()``), so
they are exact and need no sighting data.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import NamedTuple

from ramadan_backend.errors import CalendarRangeError

# date.toordinal() of 1 Muharram 1 AH (Gregorian 622-07-19).
ISLAMIC_EPOCH = 227015
RAMADAN = 9

MONTH_NAMES_EN = [
    "Muharram", "Safar", "Rabi al-Awwal", "Rabi al-Thani",
    "Jumada al-Ula", "Jumada al-Thani", "Rajab", "Sha'ban",
    "Ramadan", "Shawwal", "Dhu al-Qi'dah", "Dhu al-Hijjah",
]
MONTH_NAMES_AR = [
    "محرم", "صفر", "ربيع الأول", "ربيع الآخر",
    "جمادى الأولى", "جمادى الآخرة", "رجب", "شعبان",
    "رمضان", "شوال", "ذو القعدة", "ذو الحجة",
]

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class HijriDate(NamedTuple):
    year: int
    month: int
    day: int

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


def _fixed_from_hijri(year: int, month: int, day: int) -> int:
    return (
        ISLAMIC_EPOCH - 1
        + (year - 1) * 354
        + (3 + 11 * year) // 30
        + 29 * (month - 1)
        + month // 2
        + day
    )


MIN_GREGORIAN = date.fromordinal(ISLAMIC_EPOCH)
MAX_GREGORIAN = date.max


def is_leap_year(hijri_year: int) -> bool:
    return (14 + 11 * hijri_year) % 30 < 11


def month_length(hijri_year: int, hijri_month: int) -> int:
    if not 1 <= hijri_month <= 12:
        raise CalendarRangeError(f"Invalid Hijri month: {hijri_month}")
    if hijri_month % 2 == 1:
        return 30
    if hijri_month == 12 and is_leap_year(hijri_year):
        return 30
    return 29


def parse_gregorian_date(value: str) -> date:
    text = str(value or "").strip()
    if not _ISO_DATE_RE.match(text):
        raise CalendarRangeError(f"Invalid date format: {value!r}")
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise CalendarRangeError(f"Invalid date: {value!r}") from exc


def coerce_gregorian_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_gregorian_date(value)
    raise CalendarRangeError(f"Not a date: {value!r}")


def to_hijri(gregorian_date) -> HijriDate:
    """Convert a Gregorian date (``date`` or ``YYYY-MM-DD``) to a Hijri triple."""
    day_value = coerce_gregorian_date(gregorian_date)
    fixed = day_value.toordinal()
    if fixed < ISLAMIC_EPOCH:
        raise CalendarRangeError(f"{day_value.isoformat()} is before 1 Muharram 1 AH")
    year = (30 * (fixed - ISLAMIC_EPOCH) + 10646) // 10631
    prior_days = fixed - _fixed_from_hijri(year, 1, 1)
    month = (11 * prior_days + 330) // 325
    day = fixed - _fixed_from_hijri(year, month, 1) + 1
    return HijriDate(year, month, day)


def to_gregorian(hijri_year: int, hijri_month: int, hijri_day: int) -> date:
    for part in (hijri_year, hijri_month, hijri_day):
        if isinstance(part, bool) or not isinstance(part, int):
            raise CalendarRangeError(
                f"Invalid Hijri date: {hijri_year!r}-{hijri_month!r}-{hijri_day!r}"
            )
    if hijri_year < 1:
        raise CalendarRangeError(f"Hijri year out of range: {hijri_year}")
    length = month_length(hijri_year, hijri_month)
    if not 1 <= hijri_day <= length:
        raise CalendarRangeError(
            f"Hijri day {hijri_day} out of range for {hijri_year}-{hijri_month:02d} ({length} days)"
        )
    fixed = _fixed_from_hijri(hijri_year, hijri_month, hijri_day)
    if fixed > MAX_GREGORIAN.toordinal():
        raise CalendarRangeError(f"Hijri year out of range: {hijri_year}")
    return date.fromordinal(fixed)


def hijri_month_bounds(hijri_year: int, hijri_month: int) -> tuple[date, date]:
    last_day = month_length(hijri_year, hijri_month)
    return to_gregorian(hijri_year, hijri_month, 1), to_gregorian(hijri_year, hijri_month, last_day)


def ramadan_bounds(hijri_year: int) -> tuple[date, date]:
    return hijri_month_bounds(hijri_year, RAMADAN)


def current_ramadan_year(gregorian_date) -> int:
    """Hijri year of the Ramadan that is running or coming next."""
    hijri = to_hijri(gregorian_date)
    if hijri.month > RAMADAN:
        return hijri.year + 1
    return hijri.year


def hijri_month_name(hijri_month: int, locale: str = "en") -> str:
    names = MONTH_NAMES_AR if locale == "ar" else MONTH_NAMES_EN
    if not 1 <= hijri_month <= 12:
        return "?"
    return names[hijri_month - 1]


def format_hijri_date(hijri: HijriDate, locale: str = "en") -> str:
    suffix = "هـ" if locale == "ar" else "AH"
    return f"{hijri.day} {hijri_month_name(hijri.month, locale)} {hijri.year} {suffix}"
