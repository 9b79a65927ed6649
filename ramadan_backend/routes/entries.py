from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from ramadan_backend import entries, timezones
from ramadan_backend.auth import require_user_email, timezone_hint
from ramadan_backend.clock import get_clock
from ramadan_backend.errors import NotFoundError
from ramadan_backend.schemas import FieldSavePayload

router = APIRouter()


async def _entry_payload(entry: dict) -> dict:
    warning = entry.pop("timezone_warning", None)
    (entry,) = await entries.attach_fields([entry])
    return {"entry": entry, "warning": warning}


@router.get("/v1/entries")
async def list_entries(
    start: date = Query(...),
    end: date = Query(...),
    user_email: str = Depends(require_user_email),
    clock=Depends(get_clock),
):
    if end < start:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    items = await entries.list_entries(user_email, start, end, clock)
    return {"items": await entries.attach_fields(items)}


@router.get("/v1/entries/today")
async def get_today_entry(
    user_email: str = Depends(require_user_email),
    hint: str | None = Depends(timezone_hint),
    clock=Depends(get_clock),
):
    snapshot = await timezones.snapshot_timezone(user_email, hint)
    today = timezones.local_today(snapshot.zone, clock.now_utc())
    entry = await entries.get_or_create_entry(user_email, today, clock, snapshot=snapshot)
    return await _entry_payload(entry)


@router.get("/v1/entries/{day}")
async def get_entry(day: date, user_email: str = Depends(require_user_email), clock=Depends(get_clock)):
    entry = await entries.get_entry(user_email, day, clock)
    if entry is None:
        return {"entry": None, "warning": None}
    return await _entry_payload(entry)


@router.post("/v1/entries/{day}")
async def create_entry(
    day: date,
    user_email: str = Depends(require_user_email),
    hint: str | None = Depends(timezone_hint),
    clock=Depends(get_clock),
):
    entry = await entries.get_or_create_entry(user_email, day, clock, timezone_hint=hint)
    return await _entry_payload(entry)


@router.put("/v1/entries/{day}/fields/{field_key}")
async def save_field(
    day: date,
    field_key: str,
    payload: FieldSavePayload,
    user_email: str = Depends(require_user_email),
    clock=Depends(get_clock),
):
    entry = await entries.get_entry(user_email, day, clock)
    if entry is None:
        raise NotFoundError("Entry not found")
    field = await entries.save_field(entry, field_key, payload.field_type, payload.value, clock)
    return {"field": field}


@router.post("/v1/entries/{day}/reset")
async def reset_day(day: date, user_email: str = Depends(require_user_email), clock=Depends(get_clock)):
    entry = await entries.get_entry(user_email, day, clock)
    if entry is None:
        raise NotFoundError("Entry not found")
    entry = await entries.reset_day(entry, clock)
    return await _entry_payload(entry)
