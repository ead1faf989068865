"""
raidquota.api.routes.stats — Leaderboards, role panels and member stats
=========================================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from raidquota.api.deps import get_config, get_current_caller, get_engine
from raidquota.config import RaidQuotaConfig
from raidquota.constants import LeaderboardCategory
from raidquota.services import stats_service

router = APIRouter(tags=["stats"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class LeaderboardQuery(BaseModel):
    guild_id: int
    category: str = LeaderboardCategory.QUOTA_POINTS
    dungeon_key: str | None = None  # "all" or omitted = every dungeon
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = Field(default=None, ge=1, le=500)


class RoleLeaderboardQuery(BaseModel):
    member_ids: list[int] = Field(default_factory=list)
    period_start: datetime
    period_end: datetime


class RolePanelQuery(BaseModel):
    member_ids: list[int] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/leaderboard")
def leaderboard(
    body: LeaderboardQuery,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
    cfg: RaidQuotaConfig = Depends(get_config),
):
    try:
        result = stats_service.leaderboard(
            engine,
            body.guild_id,
            body.category,
            body.dungeon_key,
            body.since,
            body.until,
            limit=body.limit or cfg.leaderboard_limit,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {
        "category": result.category,
        "entries": [
            {"rank": i, "user_id": str(e.user_id), "value": e.value}
            for i, e in enumerate(result.entries, start=1)
        ],
        "warnings": result.warnings,
    }


@router.post("/guilds/{guild_id}/role-leaderboard")
def role_leaderboard(
    guild_id: int,
    body: RoleLeaderboardQuery,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
    cfg: RaidQuotaConfig = Depends(get_config),
):
    rows = stats_service.leaderboard_for_role(
        engine, guild_id, body.member_ids, body.period_start, body.period_end,
        limit=cfg.role_leaderboard_limit,
    )
    return [
        {"user_id": str(r.user_id), "points": r.points, "runs": r.runs}
        for r in rows
    ]


@router.post("/guilds/{guild_id}/quota/roles/{role_id}/panel")
def role_panel(
    guild_id: int,
    role_id: int,
    body: RolePanelQuery,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
    cfg: RaidQuotaConfig = Depends(get_config),
):
    """Current-period standings for every member of a quota role."""
    summary = stats_service.role_quota_summary(
        engine, guild_id, role_id, body.member_ids, limit=cfg.role_leaderboard_limit,
    )
    if summary is None:
        raise HTTPException(404, "Role is not quota-tracked")
    return {
        "role_id": str(summary.role_id),
        "required_points": summary.required_points,
        "period_start": summary.period.start.isoformat(),
        "period_end": summary.period.end.isoformat(),
        "open_ended": summary.period.open_ended,
        "members": [
            {
                "user_id": str(m.user_id),
                "points": m.points,
                "runs": m.runs,
                "met_quota": m.met_quota,
            }
            for m in summary.members
        ],
    }


@router.get("/guilds/{guild_id}/users/{user_id}/stats")
def user_stats(
    guild_id: int,
    user_id: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    s = stats_service.user_stats(engine, guild_id, user_id)
    return {
        "user_id": str(s.user_id),
        "total_points": s.total_points,
        "total_quota_points": s.total_quota_points,
        "runs_organized": s.runs_organized,
        "verifications": s.verifications,
        "keys_popped": s.keys_popped,
        "dungeons": [
            {
                "dungeon_key": d.dungeon_key,
                "completed": d.completed,
                "organized": d.organized,
                "keys_popped": d.keys_popped,
            }
            for d in s.dungeons
        ],
    }
