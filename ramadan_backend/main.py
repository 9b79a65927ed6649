from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ramadan_backend.db_init import init_db
from ramadan_backend.errors import (
    CalendarRangeError,
    DateOutOfPeriodError,
    EntryLockedError,
    InvalidTimezoneError,
    NotFoundError,
)
from ramadan_backend.routes import calendar, challenges, entries, settings
from ramadan_backend.settings import get_settings

logger = logging.getLogger("ramadan_backend")


def create_app() -> FastAPI:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    app = FastAPI(title="Ramadan Tracker API", version="0.1.0")

    app.include_router(calendar.router)
    app.include_router(entries.router)
    app.include_router(challenges.router)
    app.include_router(settings.router)

    @app.on_event("startup")
    async def _startup():
        await init_db()

    @app.exception_handler(EntryLockedError)
    async def _entry_locked_handler(request: Request, exc: EntryLockedError):
        return JSONResponse(
            status_code=423,
            content={"detail": str(exc), "code": "entry_locked", "date": exc.gregorian_date},
        )

    @app.exception_handler(DateOutOfPeriodError)
    async def _out_of_period_handler(request: Request, exc: DateOutOfPeriodError):
        return JSONResponse(
            status_code=422,
            content={
                "detail": str(exc),
                "code": "date_out_of_period",
                "date": exc.gregorian_date,
                "start_date": exc.start_date,
                "end_date": exc.end_date,
            },
        )

    @app.exception_handler(CalendarRangeError)
    async def _calendar_range_handler(request: Request, exc: CalendarRangeError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "code": "calendar_range"})

    @app.exception_handler(InvalidTimezoneError)
    async def _invalid_timezone_handler(request: Request, exc: InvalidTimezoneError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid_timezone"})

    @app.exception_handler(NotFoundError)
    async def _not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def _value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app
