from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ramadan_backend import timezones
from ramadan_backend.auth import require_user_email
from ramadan_backend.schemas import TimezoneSettingsPayload

router = APIRouter()


@router.get("/v1/settings/timezone")
async def get_timezone(user_email: str = Depends(require_user_email)):
    return await timezones.get_user_timezone_settings(user_email)


@router.put("/v1/settings/timezone")
async def set_timezone(payload: TimezoneSettingsPayload, user_email: str = Depends(require_user_email)):
    data = payload.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=400, detail="No changes provided")
    return await timezones.update_user_timezone(
        user_email,
        timezone_iana=data.get("timezone_iana"),
        timezone_source=data.get("timezone_source"),
    )
