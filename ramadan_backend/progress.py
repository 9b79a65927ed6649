from __future__ import annotations

import logging
from datetime import date, timedelta

from ramadan_backend import entries, periods, repositories, timezones
from ramadan_backend.clock import get_clock
from ramadan_backend.errors import DateOutOfPeriodError, EntryLockedError, NotFoundError
from ramadan_backend.hijri import coerce_gregorian_date

logger = logging.getLogger(__name__)

COMPLETED_VALUE = 100.0


def _period_bounds(period: dict) -> tuple[date, date]:
    return coerce_gregorian_date(period["start_date"]), coerce_gregorian_date(period["end_date"])


def compute_streak(progress_rows: list[dict], start_day: date, end_day: date) -> int:
    """Consecutive completed days ending at the latest recorded day of the period.

    A day without a progress row breaks the streak, and so does the period start.
    """
    completed_by_date = {}
    for row in progress_rows:
        row_date = coerce_gregorian_date(row["gregorian_date"])
        if start_day <= row_date <= end_day:
            completed_by_date[row_date] = bool(row.get("completed"))
    if not completed_by_date:
        return 0
    count = 0
    current = max(completed_by_date)
    while current >= start_day and completed_by_date.get(current):
        count += 1
        current = current - timedelta(days=1)
    return count


def summarize_period(period: dict, progress_rows: list[dict]) -> dict:
    start_day, end_day = _period_bounds(period)
    days_total = (end_day - start_day).days + 1
    days_completed = 0
    for row in progress_rows:
        row_date = coerce_gregorian_date(row["gregorian_date"])
        if start_day <= row_date <= end_day and row.get("completed"):
            days_completed += 1
    return {
        "period_id": period["id"],
        "days_total": days_total,
        "days_completed": days_completed,
        "completion_ratio": round(days_completed / days_total, 4) if days_total else 0.0,
        "streak": compute_streak(progress_rows, start_day, end_day),
        "completed": days_total > 0 and days_completed == days_total,
    }


async def record_progress(
    period: dict,
    gregorian_date,
    value: float,
    completed: bool,
    notes: str | None = None,
) -> dict:
    day = coerce_gregorian_date(gregorian_date)
    start_day, end_day = _period_bounds(period)
    if not start_day <= day <= end_day:
        raise DateOutOfPeriodError(day.isoformat(), period["start_date"], period["end_date"])
    await repositories.upsert_progress(period["id"], day.isoformat(), value, notes, completed)
    return {
        "period_id": period["id"],
        "gregorian_date": day.isoformat(),
        "progress_value": float(value),
        "completed": bool(completed),
    }


async def recompute_period_status(period: dict) -> dict:
    """Rebuild the period's derived status from all of its progress rows."""
    rows = await repositories.list_progress(period["id"])
    status = summarize_period(period, rows)
    await repositories.upsert_period_status(period["id"], status)
    logger.debug(
        "Period %s: %s/%s days, streak %s",
        period["id"],
        status["days_completed"],
        status["days_total"],
        status["streak"],
    )
    return status


async def get_period_status(period_id: str) -> dict:
    period = await repositories.get_period(period_id)
    if not period:
        raise NotFoundError("Period not found")
    stored = (await repositories.list_period_statuses([period_id])).get(period_id)
    return stored or await recompute_period_status(period)


async def _check_day_writable(user_email: str, challenge: dict, day: date, zone: str, clock) -> None:
    """Progress of a field-backed challenge mirrors the daily entry and shares its lock."""
    if not challenge.get("field_key"):
        return
    entry = await entries.get_entry(user_email, day, clock)
    if entry is not None:
        locked = entry["status"] == entries.STATUS_LOCKED
    else:
        locked = clock.now_utc() >= entries.compute_lock_at_utc(day, zone)
    if locked:
        raise EntryLockedError(day.isoformat())


async def record_challenge_progress(
    user_email: str,
    challenge_id: str,
    gregorian_date,
    value: float,
    completed: bool,
    notes: str | None = None,
    clock=None,
    timezone_hint: str | None = None,
) -> list[dict]:
    """Record progress for a date in every period of the challenge containing it.

    Dates after the user's local today are rejected.
    """
    clock = clock or get_clock()
    challenge = await periods.get_challenge(user_email, challenge_id)
    day = coerce_gregorian_date(gregorian_date)
    snapshot = await timezones.snapshot_timezone(user_email, timezone_hint)
    today = timezones.local_today(snapshot.zone, clock.now_utc())
    if day > today:
        raise DateOutOfPeriodError(day.isoformat(), challenge["start_date"], today.isoformat())
    await _check_day_writable(user_email, challenge, day, snapshot.zone, clock)
    known = await periods.ensure_periods(challenge, day)
    containing = await repositories.list_periods_containing(challenge_id, day.isoformat())
    if not containing:
        first = known[0]["start_date"] if known else challenge["start_date"]
        last = known[-1]["end_date"] if known else challenge["start_date"]
        raise DateOutOfPeriodError(day.isoformat(), first, last)
    statuses = []
    for period in containing:
        await record_progress(period, day, value, completed, notes)
        statuses.append(await recompute_period_status(period))
    return statuses


async def delete_progress(
    user_email: str,
    challenge_id: str,
    gregorian_date,
    clock=None,
    timezone_hint: str | None = None,
) -> list[dict]:
    """Drop a past day's progress and recompute the periods it belonged to.

    Only days before the user's local today may be cleared.
    """
    clock = clock or get_clock()
    challenge = await periods.get_challenge(user_email, challenge_id)
    day = coerce_gregorian_date(gregorian_date)
    snapshot = await timezones.snapshot_timezone(user_email, timezone_hint)
    today = timezones.local_today(snapshot.zone, clock.now_utc())
    if day >= today:
        raise ValueError("Cannot delete progress for today or future dates")
    await _check_day_writable(user_email, challenge, day, snapshot.zone, clock)
    removed = await repositories.delete_progress_on(challenge_id, day.isoformat())
    if removed:
        logger.info("Deleted %s progress row(s) of challenge %s on %s", removed, challenge_id, day.isoformat())
    return [
        await recompute_period_status(period)
        for period in await repositories.list_periods_containing(challenge_id, day.isoformat())
    ]


async def sync_field_completion(
    user_email: str, gregorian_date, field_key: str, completed: bool, clock=None
) -> int:
    """Push a daily field's completion flag into the challenges tracking that field."""
    clock = clock or get_clock()
    day = coerce_gregorian_date(gregorian_date)
    if day > periods.generation_horizon(clock.now_utc().date()):
        return 0
    touched = 0
    for challenge in await repositories.list_active_challenges_for_field(user_email, field_key):
        if day < coerce_gregorian_date(challenge["start_date"]):
            continue
        await periods.ensure_periods(challenge, day)
        for period in await repositories.list_periods_containing(challenge["id"], day.isoformat()):
            await record_progress(period, day, COMPLETED_VALUE if completed else 0.0, completed)
            await recompute_period_status(period)
            touched += 1
    return touched
