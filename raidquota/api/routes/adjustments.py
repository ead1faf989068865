"""
raidquota.api.routes.adjustments — Manual corrections & moderation credit
===========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from raidquota.api.deps import actor_id, get_current_admin, get_current_caller, get_engine
from raidquota.api.routes.events import event_dict, log_result_dict
from raidquota.services import adjustment_service
from raidquota.services.adjustment_service import AdjustmentResult

router = APIRouter(prefix="/guilds/{guild_id}", tags=["adjustments"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class LogRuns(BaseModel):
    organizer_id: int
    dungeon_key: str
    amount: int = 1  # may be negative to remove runs
    role_ids: list[int] = Field(default_factory=list)


class LogKeys(BaseModel):
    user_id: int
    dungeon_key: str
    amount: int = 1  # may be negative to remove keys


class Adjustment(BaseModel):
    user_id: int
    amount: float
    reason: str | None = None


class ModerationCredit(BaseModel):
    actor_id: int
    command: str
    role_ids: list[int] = Field(default_factory=list)


def _adjustment_dict(result: AdjustmentResult) -> dict:
    return {
        "applied": result.applied,
        "new_total": result.new_total,
        "event": event_dict(result.event) if result.event is not None else None,
    }


# ---------------------------------------------------------------------------
# Admin corrections
# ---------------------------------------------------------------------------
@router.post("/manual/runs")
def log_runs(
    guild_id: int,
    body: LogRuns,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        result = adjustment_service.log_runs(
            engine, guild_id, body.organizer_id, body.dungeon_key, body.amount,
            role_ids=body.role_ids, actor_id=actor_id(admin),
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {
        "logged": result.logged,
        "quota_points": result.quota_points,
        "event": event_dict(result.event) if result.event is not None else None,
    }


@router.post("/manual/keys")
def log_keys(
    guild_id: int,
    body: LogKeys,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        result = adjustment_service.log_keys(
            engine, guild_id, body.user_id, body.dungeon_key, body.amount,
            actor_id=actor_id(admin),
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {
        "logged": result.logged,
        "new_total": result.new_total,
        "points_awarded": result.points_awarded,
    }


@router.post("/manual/quota-points")
def adjust_quota_points(
    guild_id: int,
    body: Adjustment,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        result = adjustment_service.adjust_quota_points(
            engine, guild_id, body.user_id, body.amount,
            actor_id=actor_id(admin), reason=body.reason,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return _adjustment_dict(result)


@router.post("/manual/points")
def adjust_points(
    guild_id: int,
    body: Adjustment,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        result = adjustment_service.adjust_points(
            engine, guild_id, body.user_id, body.amount,
            actor_id=actor_id(admin), reason=body.reason,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return _adjustment_dict(result)


# ---------------------------------------------------------------------------
# Moderation credit (called by the bot after a successful command)
# ---------------------------------------------------------------------------
@router.post("/moderation")
def award_moderation(
    guild_id: int,
    body: ModerationCredit,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    try:
        result = adjustment_service.award_moderation(
            engine, guild_id, body.actor_id, body.role_ids, body.command,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return log_result_dict(result)
