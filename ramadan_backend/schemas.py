from __future__ import annotations

from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class TimezoneSettingsPayload(BaseModel):
    timezone_iana: Optional[str] = Field(None, min_length=1, max_length=100)
    timezone_source: Optional[Literal["auto", "manual"]] = None


class FieldSavePayload(BaseModel):
    field_type: Literal["checkbox", "text", "radio", "textarea"]
    value: Any = None


class ChallengeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=1000)
    scope: Literal["daily", "weekly", "monthly"]
    field_key: Optional[str] = Field(None, max_length=100)


class ChallengePatch(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    active: Optional[bool] = None


class PeriodsEnsurePayload(BaseModel):
    through: Optional[date] = None


class ProgressPayload(BaseModel):
    date_gregorian: date
    progress_value: float = Field(..., ge=0, le=100)
    notes: Optional[str] = Field(None, max_length=500)
    completed: bool = False
