from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from ramadan_backend import periods, progress, repositories
from ramadan_backend.auth import require_user_email, timezone_hint
from ramadan_backend.clock import get_clock
from ramadan_backend.schemas import ChallengeCreate, ChallengePatch, PeriodsEnsurePayload, ProgressPayload

router = APIRouter()


async def _challenge_detail(challenge: dict) -> dict:
    items = await repositories.list_periods(challenge["id"])
    statuses = await repositories.list_period_statuses([item["id"] for item in items])
    for item in items:
        item["status"] = statuses.get(item["id"])
    return {**challenge, "periods": items}


@router.get("/v1/challenges")
async def list_challenges(
    active: bool | None = Query(default=None),
    user_email: str = Depends(require_user_email),
):
    return {"items": await periods.list_challenges(user_email, active=active)}


@router.post("/v1/challenges", status_code=201)
async def create_challenge(
    payload: ChallengeCreate,
    user_email: str = Depends(require_user_email),
    hint: str | None = Depends(timezone_hint),
    clock=Depends(get_clock),
):
    challenge = await periods.create_challenge(
        user_email,
        payload.title,
        payload.scope,
        description=payload.description,
        field_key=payload.field_key,
        clock=clock,
        timezone_hint=hint,
    )
    return {"challenge": await _challenge_detail(challenge)}


@router.get("/v1/challenges/{challenge_id}")
async def get_challenge(challenge_id: str, user_email: str = Depends(require_user_email)):
    challenge = await periods.get_challenge(user_email, challenge_id)
    return {"challenge": await _challenge_detail(challenge)}


@router.patch("/v1/challenges/{challenge_id}")
async def update_challenge(
    challenge_id: str,
    payload: ChallengePatch,
    user_email: str = Depends(require_user_email),
    clock=Depends(get_clock),
):
    data = payload.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=400, detail="No changes provided")
    challenge = await periods.update_challenge(user_email, challenge_id, data, clock)
    return {"challenge": await _challenge_detail(challenge)}


@router.delete("/v1/challenges/{challenge_id}")
async def delete_challenge(challenge_id: str, user_email: str = Depends(require_user_email)):
    await periods.delete_challenge(user_email, challenge_id)
    return {"ok": True}


@router.post("/v1/challenges/{challenge_id}/periods")
async def ensure_challenge_periods(
    challenge_id: str,
    payload: PeriodsEnsurePayload,
    user_email: str = Depends(require_user_email),
    clock=Depends(get_clock),
):
    challenge = await periods.get_challenge(user_email, challenge_id)
    await periods.ensure_user_periods(user_email, challenge, payload.through, clock)
    return {"challenge": await _challenge_detail(challenge)}


@router.post("/v1/challenges/{challenge_id}/progress")
async def record_progress(
    challenge_id: str,
    payload: ProgressPayload,
    user_email: str = Depends(require_user_email),
    hint: str | None = Depends(timezone_hint),
    clock=Depends(get_clock),
):
    statuses = await progress.record_challenge_progress(
        user_email,
        challenge_id,
        payload.date_gregorian,
        payload.progress_value,
        payload.completed,
        notes=payload.notes,
        clock=clock,
        timezone_hint=hint,
    )
    challenge = await periods.get_challenge(user_email, challenge_id)
    return {"statuses": statuses, "challenge": await _challenge_detail(challenge)}


@router.delete("/v1/challenges/{challenge_id}/progress/{day}")
async def delete_progress(
    challenge_id: str,
    day: date,
    user_email: str = Depends(require_user_email),
    hint: str | None = Depends(timezone_hint),
    clock=Depends(get_clock),
):
    statuses = await progress.delete_progress(user_email, challenge_id, day, clock, timezone_hint=hint)
    challenge = await periods.get_challenge(user_email, challenge_id)
    return {"statuses": statuses, "challenge": await _challenge_detail(challenge)}
