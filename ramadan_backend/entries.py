"""Daily entry lifecycle: create lazily, mutate while open, lock at local midnight.

An entry moves open -> locked exactly once. The move is persisted by
``refresh_lock`` the first time any read or write observes that ``lock_at_utc``
has passed; there is no background sweep.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from ramadan_backend import progress, repositories, timezones
from ramadan_backend.clock import get_clock
from ramadan_backend.errors import CalendarRangeError, EntryLockedError, NotFoundError
from ramadan_backend.hijri import coerce_gregorian_date, to_hijri

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_LOCKED = "locked"

FIELD_TYPES = {"checkbox", "text", "radio", "textarea"}
_TRUE_STRINGS = {"true", "1", "yes", "on"}


def compute_lock_at_utc(gregorian_date: date, zone_name: str) -> datetime:
    """UTC instant of local midnight at the end of ``gregorian_date``."""
    try:
        next_day = gregorian_date + timedelta(days=1)
    except OverflowError as exc:
        raise CalendarRangeError(f"No lock boundary after {gregorian_date.isoformat()}") from exc
    local_midnight = datetime.combine(next_day, time.min, tzinfo=ZoneInfo(zone_name))
    return local_midnight.astimezone(timezone.utc)


def _parse_instant(value) -> datetime:
    instant = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def _instant_key(instant: datetime) -> str:
    # Same text shape as stored lock_at_utc values, so the store can compare them.
    return _parse_instant(instant).astimezone(timezone.utc).replace(microsecond=0).isoformat()


def evaluate_lock(entry: dict, now_utc: datetime) -> str:
    if entry.get("status") == STATUS_LOCKED:
        return STATUS_LOCKED
    if _parse_instant(now_utc) >= _parse_instant(entry["lock_at_utc"]):
        return STATUS_LOCKED
    return STATUS_OPEN


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def field_counts_toward_completion(field_type: str, value) -> bool:
    if field_type == "checkbox":
        return _as_bool(value)
    if field_type == "radio":
        if isinstance(value, (list, tuple, set)):
            return any(str(option).strip() for option in value if option is not None)
        return value is not None and str(value).strip() != ""
    if field_type in {"text", "textarea"}:
        return isinstance(value, str) and value.strip() != ""
    raise ValueError(f"Unknown field type: {field_type!r}")


async def refresh_lock(entry: dict, clock=None) -> dict:
    """Persist open -> locked when the lock instant has passed."""
    clock = clock or get_clock()
    if entry.get("status") != STATUS_OPEN:
        return entry
    now = clock.now_utc()
    if evaluate_lock(entry, now) != STATUS_LOCKED:
        return entry
    if await repositories.mark_entry_locked(entry["id"], now.isoformat()):
        logger.info(
            "Locked entry %s for %s on %s",
            entry["id"],
            entry.get("user_email"),
            entry.get("gregorian_date"),
        )
    return await repositories.get_entry_by_id(entry["id"]) or {**entry, "status": STATUS_LOCKED}


async def _reload(entry: dict, clock) -> dict:
    current = await repositories.get_entry_by_id(entry["id"])
    if not current:
        raise NotFoundError(f"Entry {entry['id']} not found")
    return await refresh_lock(current, clock)


async def get_or_create_entry(
    user_email: str,
    gregorian_date,
    clock=None,
    timezone_hint: str | None = None,
    snapshot: timezones.TimezoneSnapshot | None = None,
) -> dict:
    """Return the user's entry for the day, creating it on first access.

    ``snapshot`` lets a caller that already resolved the user's zone skip a
    second resolution.
    """
    clock = clock or get_clock()
    day = coerce_gregorian_date(gregorian_date)
    day_iso = day.isoformat()

    existing = await repositories.get_entry(user_email, day_iso)
    if existing:
        entry = await refresh_lock(existing, clock)
        entry["timezone_warning"] = None
        return entry

    hijri = to_hijri(day)
    if snapshot is None:
        snapshot = await timezones.snapshot_timezone(user_email, timezone_hint)
    lock_at = compute_lock_at_utc(day, snapshot.zone)
    created = await repositories.insert_entry_if_absent(
        {
            "user_email": user_email,
            "gregorian_date": day_iso,
            "hijri_year": hijri.year,
            "hijri_month": hijri.month,
            "hijri_day": hijri.day,
            "timezone_snapshot": snapshot.zone,
            "lock_at_utc": lock_at.isoformat(),
        }
    )
    entry = await repositories.get_entry(user_email, day_iso)
    if entry is None:
        raise NotFoundError(f"Entry for {day_iso} vanished after creation")
    if created:
        logger.info("Created entry for %s on %s (%s, locks at %s)", user_email, day_iso, snapshot.zone, lock_at.isoformat())
    entry = await refresh_lock(entry, clock)
    entry["timezone_warning"] = snapshot.warning if created else None
    return entry


async def get_entry(user_email: str, gregorian_date, clock=None) -> dict | None:
    day_iso = coerce_gregorian_date(gregorian_date).isoformat()
    entry = await repositories.get_entry(user_email, day_iso)
    if not entry:
        return None
    return await refresh_lock(entry, clock)


async def list_entries(user_email: str, start, end, clock=None) -> list[dict]:
    start_day = coerce_gregorian_date(start)
    end_day = coerce_gregorian_date(end)
    if end_day < start_day:
        raise ValueError("End date must be after start date")
    rows = await repositories.list_entries_range(user_email, start_day.isoformat(), end_day.isoformat())
    return [await refresh_lock(row, clock) for row in rows]


async def attach_fields(entries: list[dict]) -> list[dict]:
    by_entry: dict[str, list[dict]] = {}
    for field in await repositories.list_fields([entry["id"] for entry in entries]):
        by_entry.setdefault(field["entry_id"], []).append(field)
    for entry in entries:
        entry["fields"] = by_entry.get(entry["id"], [])
    return entries


async def save_field(entry: dict, field_key: str, field_type: str, value, clock=None) -> dict:
    field_key = str(field_key or "").strip()
    if not field_key:
        raise ValueError("Field key cannot be empty")
    if field_type not in FIELD_TYPES:
        raise ValueError(f"Unknown field type: {field_type!r}")
    clock = clock or get_clock()
    current = await _reload(entry, clock)
    if current["status"] == STATUS_LOCKED:
        raise EntryLockedError(current["gregorian_date"])

    completed = field_counts_toward_completion(field_type, value)
    previous = await repositories.get_field(current["id"], field_key)
    written = await repositories.upsert_field(
        current["id"], field_key, field_type, value, completed, _instant_key(clock.now_utc())
    )
    if not written:
        # Locked between the read above and the write.
        await _reload(current, clock)
        raise EntryLockedError(current["gregorian_date"])

    was_completed = bool(previous and previous["completed"])
    if completed or was_completed:
        await progress.sync_field_completion(
            current["user_email"], current["gregorian_date"], field_key, completed, clock
        )
    return {
        "entry_id": current["id"],
        "field_key": field_key,
        "field_type": field_type,
        "value": value,
        "completed": completed,
    }


async def reset_day(entry: dict, clock=None) -> dict:
    clock = clock or get_clock()
    current = await _reload(entry, clock)
    if current["status"] == STATUS_LOCKED:
        raise EntryLockedError(current["gregorian_date"])
    fields = await repositories.list_fields([current["id"]])
    if not await repositories.delete_fields(current["id"], _instant_key(clock.now_utc())):
        await _reload(current, clock)
        raise EntryLockedError(current["gregorian_date"])
    for field in fields:
        if field["completed"]:
            await progress.sync_field_completion(
                current["user_email"], current["gregorian_date"], field["field_key"], False, clock
            )
    return current
