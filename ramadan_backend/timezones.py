from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ramadan_backend import repositories
from ramadan_backend.errors import InvalidTimezoneError
from ramadan_backend.settings import get_settings

logger = logging.getLogger(__name__)

SOURCE_AUTO = "auto"
SOURCE_MANUAL = "manual"
TIMEZONE_SOURCES = {SOURCE_AUTO, SOURCE_MANUAL}
FALLBACK_TIMEZONE = "UTC"


@dataclass
class TimezoneSnapshot:
    zone: str
    source: str
    warning: str | None = None


def validate_timezone(zone_name) -> str:
    name = str(zone_name or "").strip()
    if not name:
        raise InvalidTimezoneError(zone_name)
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(zone_name) from exc
    return name


def resolve_timezone(timezone_iana: str | None, timezone_source: str | None, hint: str | None = None) -> str:
    """Pick the zone to snapshot onto a new entry.

    A manual setting always wins. In auto mode the client hint is preferred and
    the stored zone is used when no hint was sent.
    """
    if timezone_source == SOURCE_MANUAL:
        return validate_timezone(timezone_iana)
    candidate = hint if hint and str(hint).strip() else timezone_iana
    return validate_timezone(candidate)


def local_today(zone_name: str, now_utc: datetime) -> date:
    return now_utc.astimezone(ZoneInfo(zone_name)).date()


async def get_user_timezone_settings(user_email: str) -> dict:
    stored_zone = await repositories.get_setting(user_email, "timezone_iana")
    stored_source = await repositories.get_setting(user_email, "timezone_source")
    if stored_source not in TIMEZONE_SOURCES:
        stored_source = SOURCE_AUTO
    return {
        "timezone_iana": stored_zone or get_settings().default_timezone,
        "timezone_source": stored_source,
    }


async def update_user_timezone(
    user_email: str,
    timezone_iana: str | None = None,
    timezone_source: str | None = None,
) -> dict:
    if timezone_source is not None and timezone_source not in TIMEZONE_SOURCES:
        raise ValueError(f"Invalid timezone source: {timezone_source!r}")
    if timezone_iana is not None:
        await repositories.set_setting(user_email, "timezone_iana", validate_timezone(timezone_iana))
    if timezone_source is not None:
        await repositories.set_setting(user_email, "timezone_source", timezone_source)
    return await get_user_timezone_settings(user_email)


async def snapshot_timezone(user_email: str, hint: str | None = None) -> TimezoneSnapshot:
    """Resolve the zone for a new entry, substituting UTC when it is unusable."""
    user_settings = await get_user_timezone_settings(user_email)
    source = user_settings["timezone_source"]
    try:
        zone = resolve_timezone(user_settings["timezone_iana"], source, hint)
    except InvalidTimezoneError as exc:
        logger.warning("Falling back to %s for %s: %s", FALLBACK_TIMEZONE, user_email, exc)
        return TimezoneSnapshot(
            zone=FALLBACK_TIMEZONE,
            source=source,
            warning=f"{exc}; using {FALLBACK_TIMEZONE} instead",
        )
    if source == SOURCE_AUTO and zone != user_settings["timezone_iana"]:
        await repositories.set_setting(user_email, "timezone_iana", zone)
    return TimezoneSnapshot(zone=zone, source=source)
