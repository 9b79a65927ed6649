from __future__ import annotations

import secrets

from fastapi import Header, HTTPException

from ramadan_backend.settings import get_settings


async def require_user_email(
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    x_backend_token: str | None = Header(default=None, alias="X-Backend-Token"),
) -> str:
    settings = get_settings()
    if not x_backend_token or not secrets.compare_digest(x_backend_token, settings.backend_session_secret):
        raise HTTPException(status_code=401, detail="Invalid backend token")
    if not x_user_email or not x_user_email.strip():
        raise HTTPException(status_code=401, detail="Missing user email")
    email = x_user_email.strip().lower()
    if settings.allowed_emails and email not in settings.allowed_emails:
        raise HTTPException(status_code=403, detail="User not allowed")
    return email


async def timezone_hint(x_timezone: str | None = Header(default=None, alias="X-Timezone")) -> str | None:
    """IANA zone the client detected, used only when the user is in auto mode."""
    if x_timezone is None:
        return None
    return x_timezone.strip() or None
