from __future__ import annotations

from fastapi import APIRouter, Depends

from ramadan_backend import hijri
from ramadan_backend.auth import require_user_email
from ramadan_backend.errors import CalendarRangeError

router = APIRouter()


@router.get("/v1/hijri/{day}")
async def convert_day(day: str, user_email: str = Depends(require_user_email)):
    gregorian = hijri.parse_gregorian_date(day)
    converted = hijri.to_hijri(gregorian)
    ramadan_year = hijri.current_ramadan_year(gregorian)
    try:
        ramadan_start, ramadan_end = hijri.ramadan_bounds(ramadan_year)
    except CalendarRangeError:
        # The next Ramadan falls after the last supported Gregorian date.
        ramadan = None
    else:
        ramadan = {
            "hijri_year": ramadan_year,
            "start_date": ramadan_start.isoformat(),
            "end_date": ramadan_end.isoformat(),
        }
    return {
        "gregorian_date": gregorian.isoformat(),
        "hijri": converted._asdict(),
        "formatted": {
            "en": hijri.format_hijri_date(converted, "en"),
            "ar": hijri.format_hijri_date(converted, "ar"),
        },
        "ramadan": ramadan,
    }
