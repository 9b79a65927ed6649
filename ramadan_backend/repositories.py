from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text as sql_text, bindparam

from ramadan_backend.db import get_sessionmaker
from ramadan_backend.db_init import (
    ENTRIES_TABLE,
    ENTRY_FIELDS_TABLE,
    CHALLENGES_TABLE,
    PERIODS_TABLE,
    PROGRESS_TABLE,
    PERIOD_STATUS_TABLE,
    SETTINGS_TABLE,
)

ENTRY_SELECT_COLUMNS = [
    "id",
    "user_email",
    "gregorian_date",
    "hijri_year",
    "hijri_month",
    "hijri_day",
    "timezone_snapshot",
    "lock_at_utc",
    "status",
    "locked_at",
    "created_at",
    "updated_at",
]

CHALLENGE_SELECT_COLUMNS = [
    "id",
    "user_email",
    "title",
    "description",
    "scope",
    "field_key",
    "active",
    "start_date",
    "start_hijri_year",
    "start_hijri_month",
    "start_hijri_day",
    "created_at",
    "updated_at",
]

PERIOD_SELECT_COLUMNS = [
    "id",
    "challenge_id",
    "scope",
    "anchor_key",
    "hijri_year",
    "hijri_month",
    "hijri_day",
    "hijri_week_index",
    "start_date",
    "end_date",
    "active",
    "created_at",
]

CHALLENGE_PATCHABLE = {"title", "description", "active"}


def _new_id() -> str:
    return uuid4().hex


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_field_row(row) -> dict:
    payload = dict(row)
    raw = payload.pop("value_json", None)
    try:
        payload["value"] = json.loads(raw) if raw is not None else None
    except ValueError:
        payload["value"] = raw
    payload["completed"] = bool(payload.get("completed"))
    return payload


def _normalize_challenge_row(row) -> dict:
    payload = dict(row)
    payload["active"] = bool(payload.get("active"))
    return payload


def _normalize_period_row(row) -> dict:
    payload = dict(row)
    payload["active"] = bool(payload.get("active"))
    return payload


def _normalize_progress_row(row) -> dict:
    payload = dict(row)
    payload["progress_value"] = float(payload.get("progress_value") or 0)
    payload["completed"] = bool(payload.get("completed"))
    return payload


async def get_setting(user_email: str, key: str, scoped: bool = True) -> str | None:
    setting_key = f"{user_email}::{key}" if scoped else key
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT value FROM {SETTINGS_TABLE} WHERE key = :key"),
            {"key": setting_key},
        )).fetchone()
    return row[0] if row else None


async def set_setting(user_email: str, key: str, value: str, scoped: bool = True) -> None:
    setting_key = f"{user_email}::{key}" if scoped else key
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"INSERT INTO {SETTINGS_TABLE} (key, value) VALUES (:key, :value) "
                "ON CONFLICT(key) DO UPDATE SET value=EXCLUDED.value"
            ),
            {"key": setting_key, "value": value},
        )
        await session.commit()


async def insert_entry_if_absent(record: dict) -> bool:
    """Insert a daily entry unless one exists for (user_email, gregorian_date)."""
    payload = {"id": _new_id(), "status": "open", "created_at": _utc_now_iso(), **record}
    payload.setdefault("updated_at", payload["created_at"])
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(
                f"""
                INSERT INTO {ENTRIES_TABLE}
                (id, user_email, gregorian_date, hijri_year, hijri_month, hijri_day,
                 timezone_snapshot, lock_at_utc, status, created_at, updated_at)
                VALUES
                (:id, :user_email, :gregorian_date, :hijri_year, :hijri_month, :hijri_day,
                 :timezone_snapshot, :lock_at_utc, :status, :created_at, :updated_at)
                ON CONFLICT(user_email, gregorian_date) DO NOTHING
                """
            ),
            payload,
        )
        await session.commit()
    return (result.rowcount or 0) > 0


async def get_entry(user_email: str, day_iso: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"SELECT {', '.join(ENTRY_SELECT_COLUMNS)} FROM {ENTRIES_TABLE} "
                "WHERE user_email = :user_email AND gregorian_date = :gregorian_date"
            ),
            {"user_email": user_email, "gregorian_date": day_iso},
        )).mappings().fetchone()
    return dict(row) if row else None


async def get_entry_by_id(entry_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {', '.join(ENTRY_SELECT_COLUMNS)} FROM {ENTRIES_TABLE} WHERE id = :id"),
            {"id": entry_id},
        )).mappings().fetchone()
    return dict(row) if row else None


async def list_entries_range(user_email: str, start_iso: str, end_iso: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {', '.join(ENTRY_SELECT_COLUMNS)}
                FROM {ENTRIES_TABLE}
                WHERE user_email = :user_email
                  AND gregorian_date BETWEEN :start_date AND :end_date
                ORDER BY gregorian_date
                """
            ),
            {"user_email": user_email, "start_date": start_iso, "end_date": end_iso},
        )).mappings().all()
    return [dict(row) for row in rows]


async def mark_entry_locked(entry_id: str, locked_at: str) -> bool:
    """Flip an open entry to locked. Returns False when another caller already did."""
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(
                f"""
                UPDATE {ENTRIES_TABLE}
                SET status = 'locked', locked_at = :locked_at, updated_at = :locked_at
                WHERE id = :id AND status = 'open'
                """
            ),
            {"id": entry_id, "locked_at": locked_at},
        )
        await session.commit()
    return (result.rowcount or 0) > 0


async def _claim_open_entry(session, entry_id: str, now_iso: str) -> bool:
    """Touch the entry only while it is open and before its lock instant.

    The row stays write-locked until the caller commits, so a concurrent
    ``mark_entry_locked`` lands after the caller's write, never under it.
    """
    result = await session.execute(
        sql_text(
            f"""
            UPDATE {ENTRIES_TABLE}
            SET updated_at = :updated_at
            WHERE id = :id AND status = 'open' AND lock_at_utc > :now
            """
        ),
        {"id": entry_id, "now": now_iso, "updated_at": _utc_now_iso()},
    )
    return (result.rowcount or 0) > 0


async def get_field(entry_id: str, field_key: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"""
                SELECT entry_id, field_key, field_type, value_json, completed, updated_at
                FROM {ENTRY_FIELDS_TABLE}
                WHERE entry_id = :entry_id AND field_key = :field_key
                """
            ),
            {"entry_id": entry_id, "field_key": field_key},
        )).mappings().fetchone()
    return _normalize_field_row(row) if row else None


async def list_fields(entry_ids: list[str]) -> list[dict]:
    if not entry_ids:
        return []
    session_factory = get_sessionmaker()
    stmt = sql_text(
        f"""
        SELECT entry_id, field_key, field_type, value_json, completed, updated_at
        FROM {ENTRY_FIELDS_TABLE}
        WHERE entry_id IN :entry_ids
        ORDER BY entry_id, field_key
        """
    ).bindparams(bindparam("entry_ids", expanding=True))
    async with session_factory() as session:
        rows = (await session.execute(stmt, {"entry_ids": list(entry_ids)})).mappings().all()
    return [_normalize_field_row(row) for row in rows]


async def upsert_field(
    entry_id: str, field_key: str, field_type: str, value, completed: bool, now_iso: str
) -> bool:
    """Write a field on an open entry. Returns False, writing nothing, once the entry is locked."""
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        if not await _claim_open_entry(session, entry_id, now_iso):
            await session.rollback()
            return False
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {ENTRY_FIELDS_TABLE}
                    (entry_id, field_key, field_type, value_json, completed, updated_at)
                VALUES
                    (:entry_id, :field_key, :field_type, :value_json, :completed, :updated_at)
                ON CONFLICT(entry_id, field_key) DO UPDATE SET
                    field_type = EXCLUDED.field_type,
                    value_json = EXCLUDED.value_json,
                    completed = EXCLUDED.completed,
                    updated_at = EXCLUDED.updated_at
                """
            ),
            {
                "entry_id": entry_id,
                "field_key": field_key,
                "field_type": field_type,
                "value_json": json.dumps(value, ensure_ascii=False),
                "completed": int(bool(completed)),
                "updated_at": _utc_now_iso(),
            },
        )
        await session.commit()
    return True


async def delete_fields(entry_id: str, now_iso: str) -> bool:
    """Clear every field of an open entry. Returns False, deleting nothing, once it is locked."""
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        if not await _claim_open_entry(session, entry_id, now_iso):
            await session.rollback()
            return False
        await session.execute(
            sql_text(f"DELETE FROM {ENTRY_FIELDS_TABLE} WHERE entry_id = :entry_id"),
            {"entry_id": entry_id},
        )
        await session.commit()
    return True


async def create_challenge(user_email: str, payload: dict) -> dict:
    now = _utc_now_iso()
    record = {
        "id": _new_id(),
        "user_email": user_email,
        "title": payload["title"],
        "description": payload.get("description") or "",
        "scope": payload["scope"],
        "field_key": payload.get("field_key"),
        "active": 1,
        "start_date": payload["start_date"],
        "start_hijri_year": payload["start_hijri_year"],
        "start_hijri_month": payload["start_hijri_month"],
        "start_hijri_day": payload["start_hijri_day"],
        "created_at": now,
        "updated_at": now,
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {CHALLENGES_TABLE}
                ({', '.join(CHALLENGE_SELECT_COLUMNS)})
                VALUES
                ({', '.join(f':{col}' for col in CHALLENGE_SELECT_COLUMNS)})
                """
            ),
            record,
        )
        await session.commit()
    return _normalize_challenge_row(record)


async def get_challenge(user_email: str, challenge_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"SELECT {', '.join(CHALLENGE_SELECT_COLUMNS)} FROM {CHALLENGES_TABLE} "
                "WHERE id = :id AND user_email = :user_email"
            ),
            {"id": challenge_id, "user_email": user_email},
        )).mappings().fetchone()
    return _normalize_challenge_row(row) if row else None


async def list_challenges(user_email: str, active: bool | None = None) -> list[dict]:
    query = (
        f"SELECT {', '.join(CHALLENGE_SELECT_COLUMNS)} FROM {CHALLENGES_TABLE} "
        "WHERE user_email = :user_email"
    )
    params: dict = {"user_email": user_email}
    if active is not None:
        query += " AND active = :active"
        params["active"] = int(active)
    query += " ORDER BY created_at DESC"
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(sql_text(query), params)).mappings().all()
    return [_normalize_challenge_row(row) for row in rows]


async def list_active_challenges_for_field(user_email: str, field_key: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {', '.join(CHALLENGE_SELECT_COLUMNS)}
                FROM {CHALLENGES_TABLE}
                WHERE user_email = :user_email
                  AND field_key = :field_key
                  AND active = 1
                ORDER BY created_at
                """
            ),
            {"user_email": user_email, "field_key": field_key},
        )).mappings().all()
    return [_normalize_challenge_row(row) for row in rows]


async def update_challenge(user_email: str, challenge_id: str, patch: dict) -> None:
    clean = {key: value for key, value in (patch or {}).items() if key in CHALLENGE_PATCHABLE}
    if not clean:
        return
    if "active" in clean:
        clean["active"] = int(bool(clean["active"]))
    clean["updated_at"] = _utc_now_iso()
    assignments = ", ".join(f"{key} = :{key}" for key in clean)
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"UPDATE {CHALLENGES_TABLE} SET {assignments} "
                "WHERE id = :id AND user_email = :user_email"
            ),
            {**clean, "id": challenge_id, "user_email": user_email},
        )
        await session.commit()


async def set_periods_active(challenge_id: str, active: bool) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"UPDATE {PERIODS_TABLE} SET active = :active WHERE challenge_id = :challenge_id"),
            {"challenge_id": challenge_id, "active": int(bool(active))},
        )
        await session.commit()


async def delete_challenge(user_email: str, challenge_id: str) -> bool:
    """Delete a challenge with its periods, progress rows and period statuses."""
    period_ids = f"SELECT id FROM {PERIODS_TABLE} WHERE challenge_id = :challenge_id"
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(f"DELETE FROM {CHALLENGES_TABLE} WHERE id = :challenge_id AND user_email = :user_email"),
            {"challenge_id": challenge_id, "user_email": user_email},
        )
        if not result.rowcount:
            await session.rollback()
            return False
        params = {"challenge_id": challenge_id}
        await session.execute(
            sql_text(f"DELETE FROM {PERIOD_STATUS_TABLE} WHERE period_id IN ({period_ids})"), params
        )
        await session.execute(
            sql_text(f"DELETE FROM {PROGRESS_TABLE} WHERE period_id IN ({period_ids})"), params
        )
        await session.execute(
            sql_text(f"DELETE FROM {PERIODS_TABLE} WHERE challenge_id = :challenge_id"), params
        )
        await session.commit()
    return True


async def insert_periods_if_absent(challenge_id: str, periods: list[dict]) -> int:
    """Create-if-absent keyed by (challenge_id, anchor_key). Returns the number inserted."""
    if not periods:
        return 0
    created = 0
    now = _utc_now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for period in periods:
            result = await session.execute(
                sql_text(
                    f"""
                    INSERT INTO {PERIODS_TABLE}
                    ({', '.join(PERIOD_SELECT_COLUMNS)})
                    VALUES
                    ({', '.join(f':{col}' for col in PERIOD_SELECT_COLUMNS)})
                    ON CONFLICT(challenge_id, anchor_key) DO NOTHING
                    """
                ),
                {
                    "id": _new_id(),
                    "challenge_id": challenge_id,
                    "scope": period["scope"],
                    "anchor_key": period["anchor_key"],
                    "hijri_year": period["hijri_year"],
                    "hijri_month": period.get("hijri_month"),
                    "hijri_day": period.get("hijri_day"),
                    "hijri_week_index": period.get("hijri_week_index"),
                    "start_date": period["start_date"],
                    "end_date": period["end_date"],
                    "active": 1,
                    "created_at": now,
                },
            )
            created += max(result.rowcount or 0, 0)
        await session.commit()
    return created


async def list_periods(challenge_id: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {', '.join(PERIOD_SELECT_COLUMNS)}
                FROM {PERIODS_TABLE}
                WHERE challenge_id = :challenge_id
                ORDER BY start_date, anchor_key
                """
            ),
            {"challenge_id": challenge_id},
        )).mappings().all()
    return [_normalize_period_row(row) for row in rows]


async def get_period(period_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {', '.join(PERIOD_SELECT_COLUMNS)} FROM {PERIODS_TABLE} WHERE id = :id"),
            {"id": period_id},
        )).mappings().fetchone()
    return _normalize_period_row(row) if row else None


async def list_periods_containing(challenge_id: str, day_iso: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {', '.join(PERIOD_SELECT_COLUMNS)}
                FROM {PERIODS_TABLE}
                WHERE challenge_id = :challenge_id
                  AND start_date <= :day_iso
                  AND end_date >= :day_iso
                ORDER BY start_date
                """
            ),
            {"challenge_id": challenge_id, "day_iso": day_iso},
        )).mappings().all()
    return [_normalize_period_row(row) for row in rows]


async def upsert_progress(
    period_id: str, day_iso: str, progress_value: float, notes: str | None, completed: bool
) -> None:
    """Last write wins per (period, date). ``notes=None`` keeps the stored notes."""
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {PROGRESS_TABLE}
                    (period_id, gregorian_date, progress_value, notes, completed, updated_at)
                VALUES
                    (:period_id, :gregorian_date, :progress_value, :notes, :completed, :updated_at)
                ON CONFLICT(period_id, gregorian_date) DO UPDATE SET
                    progress_value = EXCLUDED.progress_value,
                    notes = CASE WHEN :keep_notes = 1 THEN {PROGRESS_TABLE}.notes ELSE EXCLUDED.notes END,
                    completed = EXCLUDED.completed,
                    updated_at = EXCLUDED.updated_at
                """
            ),
            {
                "period_id": period_id,
                "gregorian_date": day_iso,
                "progress_value": float(progress_value),
                "notes": notes or "",
                "keep_notes": int(notes is None),
                "completed": int(bool(completed)),
                "updated_at": _utc_now_iso(),
            },
        )
        await session.commit()


async def delete_progress_on(challenge_id: str, day_iso: str) -> int:
    """Remove a date's progress from every period of the challenge. Returns rows deleted."""
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(
                f"""
                DELETE FROM {PROGRESS_TABLE}
                WHERE gregorian_date = :day_iso
                  AND period_id IN (SELECT id FROM {PERIODS_TABLE} WHERE challenge_id = :challenge_id)
                """
            ),
            {"challenge_id": challenge_id, "day_iso": day_iso},
        )
        await session.commit()
    return max(result.rowcount or 0, 0)


async def list_progress(period_id: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT period_id, gregorian_date, progress_value, notes, completed, updated_at
                FROM {PROGRESS_TABLE}
                WHERE period_id = :period_id
                ORDER BY gregorian_date
                """
            ),
            {"period_id": period_id},
        )).mappings().all()
    return [_normalize_progress_row(row) for row in rows]


async def upsert_period_status(period_id: str, status: dict) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {PERIOD_STATUS_TABLE}
                    (period_id, days_total, days_completed, completion_ratio, streak, completed, updated_at)
                VALUES
                    (:period_id, :days_total, :days_completed, :completion_ratio, :streak, :completed, :updated_at)
                ON CONFLICT(period_id) DO UPDATE SET
                    days_total = EXCLUDED.days_total,
                    days_completed = EXCLUDED.days_completed,
                    completion_ratio = EXCLUDED.completion_ratio,
                    streak = EXCLUDED.streak,
                    completed = EXCLUDED.completed,
                    updated_at = EXCLUDED.updated_at
                """
            ),
            {
                "period_id": period_id,
                "days_total": int(status["days_total"]),
                "days_completed": int(status["days_completed"]),
                "completion_ratio": float(status["completion_ratio"]),
                "streak": int(status["streak"]),
                "completed": int(bool(status["completed"])),
                "updated_at": _utc_now_iso(),
            },
        )
        await session.commit()


async def list_period_statuses(period_ids: list[str]) -> dict[str, dict]:
    if not period_ids:
        return {}
    session_factory = get_sessionmaker()
    stmt = sql_text(
        f"""
        SELECT period_id, days_total, days_completed, completion_ratio, streak, completed, updated_at
        FROM {PERIOD_STATUS_TABLE}
        WHERE period_id IN :period_ids
        """
    ).bindparams(bindparam("period_ids", expanding=True))
    async with session_factory() as session:
        rows = (await session.execute(stmt, {"period_ids": list(period_ids)})).mappings().all()
    payload = {}
    for row in rows:
        item = dict(row)
        item["completed"] = bool(item.get("completed"))
        payload[item["period_id"]] = item
    return payload
