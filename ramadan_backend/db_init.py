from __future__ import annotations

from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError

from ramadan_backend.db import get_engine


ENTRIES_TABLE = "daily_entries"
ENTRY_FIELDS_TABLE = "daily_entry_fields"
CHALLENGES_TABLE = "challenges"
PERIODS_TABLE = "challenge_periods"
PROGRESS_TABLE = "challenge_progress"
PERIOD_STATUS_TABLE = "challenge_period_status"
SETTINGS_TABLE = "settings"


async def init_db():
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {ENTRIES_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_email TEXT NOT NULL,
                    gregorian_date TEXT NOT NULL,
                    hijri_year INTEGER NOT NULL,
                    hijri_month INTEGER NOT NULL,
                    hijri_day INTEGER NOT NULL,
                    timezone_snapshot TEXT NOT NULL,
                    lock_at_utc TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    locked_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    UNIQUE (user_email, gregorian_date)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {ENTRY_FIELDS_TABLE} (
                    entry_id TEXT NOT NULL,
                    field_key TEXT NOT NULL,
                    field_type TEXT NOT NULL,
                    value_json TEXT,
                    completed INTEGER DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (entry_id, field_key)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {CHALLENGES_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_email TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    scope TEXT NOT NULL,
                    field_key TEXT,
                    active INTEGER DEFAULT 1,
                    start_date TEXT NOT NULL,
                    start_hijri_year INTEGER NOT NULL,
                    start_hijri_month INTEGER NOT NULL,
                    start_hijri_day INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {PERIODS_TABLE} (
                    id TEXT PRIMARY KEY,
                    challenge_id TEXT NOT NULL,
                    scope TEXT NOT NULL,
                    anchor_key TEXT NOT NULL,
                    hijri_year INTEGER NOT NULL,
                    hijri_month INTEGER,
                    hijri_day INTEGER,
                    hijri_week_index INTEGER,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    active INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL,
                    UNIQUE (challenge_id, anchor_key)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {PROGRESS_TABLE} (
                    period_id TEXT NOT NULL,
                    gregorian_date TEXT NOT NULL,
                    progress_value REAL DEFAULT 0,
                    notes TEXT DEFAULT '',
                    completed INTEGER DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (period_id, gregorian_date)
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {PERIOD_STATUS_TABLE} (
                    period_id TEXT PRIMARY KEY,
                    days_total INTEGER DEFAULT 0,
                    days_completed INTEGER DEFAULT 0,
                    completion_ratio REAL DEFAULT 0,
                    streak INTEGER DEFAULT 0,
                    completed INTEGER DEFAULT 0,
                    updated_at TEXT
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )
        )

    async def ensure_index(index_sql: str) -> None:
        try:
            async with engine.begin() as conn:
                await conn.execute(sql_text(index_sql))
        except SQLAlchemyError:
            return

    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{ENTRIES_TABLE}_user_date "
        f"ON {ENTRIES_TABLE} (user_email, gregorian_date)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{CHALLENGES_TABLE}_user_field "
        f"ON {CHALLENGES_TABLE} (user_email, field_key, active)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{PERIODS_TABLE}_range "
        f"ON {PERIODS_TABLE} (challenge_id, start_date, end_date)"
    )
