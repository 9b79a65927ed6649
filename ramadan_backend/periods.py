"""Challenge periods anchored to the Hijri calendar.

Every period has an ``anchor_key`` that is unique per challenge:

* ``daily:<hijri y-m-d>`` one period per Hijri day
* ``weekly:<n>`` rolling 7-day windows counted from the challenge's first day
* ``monthly:<hijri y-m>`` the whole Hijri month, even when the challenge
  started half way through it

``ensure_periods`` only ever inserts missing anchors, so calling it again (from
this or any other process) never duplicates a period.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta

from ramadan_backend import progress, repositories, timezones
from ramadan_backend.clock import get_clock
from ramadan_backend.errors import CalendarRangeError, NotFoundError
from ramadan_backend.hijri import (
    MAX_GREGORIAN,
    coerce_gregorian_date,
    current_ramadan_year,
    hijri_month_bounds,
    ramadan_bounds,
    to_gregorian,
    to_hijri,
)

logger = logging.getLogger(__name__)

SCOPE_DAILY = "daily"
SCOPE_WEEKLY = "weekly"
SCOPE_MONTHLY = "monthly"
SCOPES = (SCOPE_DAILY, SCOPE_WEEKLY, SCOPE_MONTHLY)

WEEK_LENGTH = 7
MAX_TITLE_LENGTH = 200


def _as_gregorian(value) -> date:
    if isinstance(value, tuple) and len(value) == 3:
        return to_gregorian(*value)
    return coerce_gregorian_date(value)


def _daily_periods(start_day: date, through_day: date) -> list[dict]:
    periods = []
    current = start_day
    while current <= through_day:
        hijri = to_hijri(current)
        periods.append(
            {
                "scope": SCOPE_DAILY,
                "anchor_key": f"{SCOPE_DAILY}:{hijri.isoformat()}",
                "hijri_year": hijri.year,
                "hijri_month": hijri.month,
                "hijri_day": hijri.day,
                "start_date": current.isoformat(),
                "end_date": current.isoformat(),
            }
        )
        if current == date.max:
            break
        current += timedelta(days=1)
    return periods


def _weekly_periods(start_day: date, through_day: date) -> list[dict]:
    periods = []
    week_index = 0
    window_start = start_day
    while window_start <= through_day:
        hijri = to_hijri(window_start)
        try:
            window_end = window_start + timedelta(days=WEEK_LENGTH - 1)
        except OverflowError:
            window_end = date.max
        periods.append(
            {
                "scope": SCOPE_WEEKLY,
                "anchor_key": f"{SCOPE_WEEKLY}:{week_index}",
                "hijri_year": hijri.year,
                "hijri_month": hijri.month,
                "hijri_week_index": week_index,
                "start_date": window_start.isoformat(),
                "end_date": window_end.isoformat(),
            }
        )
        if window_end == date.max:
            break
        week_index += 1
        window_start = window_end + timedelta(days=1)
    return periods


def _monthly_periods(start_day: date, through_day: date) -> list[dict]:
    periods = []
    first = to_hijri(start_day)
    year, month = first.year, first.month
    while True:
        try:
            month_start, month_end = hijri_month_bounds(year, month)
        except CalendarRangeError:
            break
        if month_start > through_day:
            break
        periods.append(
            {
                "scope": SCOPE_MONTHLY,
                "anchor_key": f"{SCOPE_MONTHLY}:{year:04d}-{month:02d}",
                "hijri_year": year,
                "hijri_month": month,
                "start_date": month_start.isoformat(),
                "end_date": month_end.isoformat(),
            }
        )
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return periods


def plan_periods(scope: str, start_day: date, through_day: date) -> list[dict]:
    """Every period of ``scope`` from the challenge start up to ``through_day``."""
    if scope not in SCOPES:
        raise ValueError(f"Unknown challenge scope: {scope!r}")
    if through_day < start_day:
        return []
    if scope == SCOPE_DAILY:
        return _daily_periods(start_day, through_day)
    if scope == SCOPE_WEEKLY:
        return _weekly_periods(start_day, through_day)
    return _monthly_periods(start_day, through_day)


def generation_horizon(today: date) -> date:
    """Last day periods may be generated for: the end of the Ramadan after the current one."""
    try:
        return ramadan_bounds(current_ramadan_year(today) + 1)[1]
    except CalendarRangeError:
        return MAX_GREGORIAN


async def ensure_periods(challenge: dict, through_hijri_date) -> list[dict]:
    """Create missing periods up to and including ``through_hijri_date``.

    ``through_hijri_date`` may be a ``HijriDate``/``(y, m, d)`` tuple or a
    Gregorian ``date``. Inactive challenges get no new periods.
    """
    if not challenge.get("active"):
        return await repositories.list_periods(challenge["id"])
    through_day = _as_gregorian(through_hijri_date)
    start_day = coerce_gregorian_date(challenge["start_date"])
    planned = plan_periods(challenge["scope"], start_day, through_day)
    created = await repositories.insert_periods_if_absent(challenge["id"], planned)
    if created:
        logger.info(
            "Generated %s %s period(s) for challenge %s through %s",
            created,
            challenge["scope"],
            challenge["id"],
            through_day.isoformat(),
        )
    return await repositories.list_periods(challenge["id"])


async def _local_today(user_email: str, clock, timezone_hint: str | None = None) -> date:
    snapshot = await timezones.snapshot_timezone(user_email, timezone_hint)
    return timezones.local_today(snapshot.zone, clock.now_utc())


async def ensure_user_periods(user_email: str, challenge: dict, through=None, clock=None) -> list[dict]:
    """Generate the challenge's periods for a caller-supplied horizon.

    Without ``through`` this covers the current (or upcoming) Ramadan. Requests
    beyond ``generation_horizon`` are cut back to it.
    """
    clock = clock or get_clock()
    today = await _local_today(user_email, clock)
    if through is None:
        try:
            through_day = ramadan_bounds(current_ramadan_year(today))[1]
        except CalendarRangeError:
            through_day = MAX_GREGORIAN
    else:
        through_day = _as_gregorian(through)
    horizon = generation_horizon(today)
    if through_day > horizon:
        logger.info(
            "Capping period generation for challenge %s at %s (requested %s)",
            challenge["id"],
            horizon.isoformat(),
            through_day.isoformat(),
        )
        through_day = horizon
    return await ensure_periods(challenge, through_day)


def _clean_title(title) -> str:
    clean = " ".join(str(title or "").split()).strip()
    if not clean:
        raise ValueError("Challenge title cannot be empty")
    return clean[:MAX_TITLE_LENGTH]


async def create_challenge(
    user_email: str,
    title: str,
    scope: str,
    description: str = "",
    field_key: str | None = None,
    clock=None,
    timezone_hint: str | None = None,
) -> dict:
    clock = clock or get_clock()
    if scope not in SCOPES:
        raise ValueError(f"Unknown challenge scope: {scope!r}")
    today = await _local_today(user_email, clock, timezone_hint)
    hijri = to_hijri(today)
    challenge = await repositories.create_challenge(
        user_email,
        {
            "title": _clean_title(title),
            "description": description or "",
            "scope": scope,
            "field_key": (field_key or "").strip() or None,
            "start_date": today.isoformat(),
            "start_hijri_year": hijri.year,
            "start_hijri_month": hijri.month,
            "start_hijri_day": hijri.day,
        },
    )
    challenge["periods"] = await ensure_periods(challenge, hijri)
    if challenge["field_key"]:
        await _backfill_field(user_email, challenge, today, clock)
    return challenge


async def _backfill_field(user_email: str, challenge: dict, today: date, clock) -> None:
    # A field completed before the challenge existed still counts for today.
    entry = await repositories.get_entry(user_email, today.isoformat())
    if not entry:
        return
    field = await repositories.get_field(entry["id"], challenge["field_key"])
    if field and field["completed"]:
        await progress.sync_field_completion(user_email, today, challenge["field_key"], True, clock)


async def get_challenge(user_email: str, challenge_id: str) -> dict:
    challenge = await repositories.get_challenge(user_email, challenge_id)
    if not challenge:
        raise NotFoundError("Challenge not found")
    return challenge


async def delete_challenge(user_email: str, challenge_id: str) -> None:
    if not await repositories.delete_challenge(user_email, challenge_id):
        raise NotFoundError("Challenge not found")
    logger.info("Deleted challenge %s for %s", challenge_id, user_email)


async def list_challenges(user_email: str, active: bool | None = None) -> list[dict]:
    return await repositories.list_challenges(user_email, active=active)


async def update_challenge(user_email: str, challenge_id: str, patch: dict, clock=None) -> dict:
    clock = clock or get_clock()
    challenge = await get_challenge(user_email, challenge_id)
    clean = dict(patch or {})
    if "title" in clean:
        clean["title"] = _clean_title(clean["title"])
    await repositories.update_challenge(user_email, challenge_id, clean)

    if "active" in clean and bool(clean["active"]) != challenge["active"]:
        await repositories.set_periods_active(challenge_id, bool(clean["active"]))
        logger.info(
            "Challenge %s %s", challenge_id, "reactivated" if clean["active"] else "deactivated"
        )
    updated = await get_challenge(user_email, challenge_id)
    if updated["active"] and not challenge["active"]:
        await ensure_periods(updated, await _local_today(user_email, clock))
    return updated
