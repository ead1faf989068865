"""
raidquota.api.routes.config — Quota configuration endpoints
=============================================================

Reads need any valid token; writes need an admin token and are recorded
in the audit log with the admin's id.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from raidquota.api.deps import actor_id, get_config, get_current_admin, get_current_caller, get_engine
from raidquota.config import RaidQuotaConfig
from raidquota.database.models import QuotaRoleConfig
from raidquota.engine.periods import current_period
from raidquota.services import config_service, points_service

router = APIRouter(prefix="/guilds/{guild_id}/quota", tags=["config"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RoleConfigUpdate(BaseModel):
    required_points: float | None = Field(default=None, ge=0)
    reset_at: datetime | None = None
    created_at: datetime | None = None  # set only to restart the quota cycle
    base_exalt_points: float | None = Field(default=None, ge=0)
    base_non_exalt_points: float | None = Field(default=None, ge=0)
    verify_points: float | None = Field(default=None, ge=0)
    warn_points: float | None = Field(default=None, ge=0)
    suspend_points: float | None = Field(default=None, ge=0)
    modmail_reply_points: float | None = Field(default=None, ge=0)
    editname_points: float | None = Field(default=None, ge=0)
    addnote_points: float | None = Field(default=None, ge=0)
    panel_message_id: str | None = None


class PointsValue(BaseModel):
    points: float = Field(ge=0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _role_config_dict(c: QuotaRoleConfig) -> dict:
    period = current_period(c)
    return {
        "guild_id": str(c.guild_id),
        "role_id": str(c.role_id),
        "required_points": float(c.required_points),
        "reset_at": c.reset_at.isoformat(),
        "created_at": c.created_at.isoformat(),
        "base_exalt_points": float(c.base_exalt_points),
        "base_non_exalt_points": float(c.base_non_exalt_points),
        "verify_points": float(c.verify_points),
        "warn_points": float(c.warn_points),
        "suspend_points": float(c.suspend_points),
        "modmail_reply_points": float(c.modmail_reply_points),
        "editname_points": float(c.editname_points),
        "addnote_points": float(c.addnote_points),
        "panel_message_id": c.panel_message_id,
        "period_start": period.start.isoformat(),
        "period_end": period.end.isoformat(),
    }


def _changes(body: BaseModel) -> dict:
    """Fields the caller actually sent; explicit nulls are dropped except
    for ``panel_message_id``, which may be cleared."""
    sent = body.model_dump(exclude_unset=True)
    return {
        k: v for k, v in sent.items()
        if v is not None or k == "panel_message_id"
    }


# ---------------------------------------------------------------------------
# Aggregate + resolution
# ---------------------------------------------------------------------------
@router.get("/config")
def get_all_configs(
    guild_id: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    data = config_service.get_all_configs(engine, guild_id)
    return {
        "roles": [_role_config_dict(c) for c in data["roles"]],
        "overrides": {str(role): o for role, o in data["overrides"].items()},
        "raider_points": data["raider_points"],
        "key_pop_points": data["key_pop_points"],
    }


@router.get("/points")
def resolve_points(
    guild_id: int,
    dungeon_key: str,
    role_ids: list[int] | None = Query(None),
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    """Quota points a run of *dungeon_key* is worth for the given roles."""
    return {
        "dungeon_key": dungeon_key,
        "points": points_service.resolve_points_for(engine, guild_id, dungeon_key, role_ids),
        "raider_points": points_service.resolve_raider_points(engine, guild_id, dungeon_key),
        "key_pop_points": points_service.resolve_key_pop_points(engine, guild_id, dungeon_key),
    }


# ---------------------------------------------------------------------------
# Role configs
# ---------------------------------------------------------------------------
@router.get("/roles/{role_id}")
def get_role_config(
    guild_id: int,
    role_id: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    config = config_service.get_role_config(engine, guild_id, role_id)
    if config is None:
        raise HTTPException(404, "Role is not quota-tracked")
    return {
        **_role_config_dict(config),
        "dungeon_overrides": config_service.get_dungeon_overrides(engine, guild_id, role_id),
    }


@router.put("/roles/{role_id}")
def upsert_role_config(
    guild_id: int,
    role_id: int,
    body: RoleConfigUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: RaidQuotaConfig = Depends(get_config),
):
    config = config_service.upsert_role_config(
        engine,
        guild_id,
        role_id,
        _changes(body),
        actor_id=actor_id(admin),
        default_reset_days=cfg.default_reset_days,
    )
    return _role_config_dict(config)


@router.delete("/roles/{role_id}")
def delete_role_config(
    guild_id: int,
    role_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not config_service.delete_role_config(engine, guild_id, role_id, actor_id=actor_id(admin)):
        raise HTTPException(404, "Role is not quota-tracked")
    return {"deleted": True}


@router.put("/roles/{role_id}/overrides/{dungeon_key}")
def set_dungeon_override(
    guild_id: int,
    role_id: int,
    dungeon_key: str,
    body: PointsValue,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    config_service.set_dungeon_override(
        engine, guild_id, role_id, dungeon_key, body.points, actor_id=actor_id(admin),
    )
    return {"role_id": str(role_id), "dungeon_key": dungeon_key, "points": body.points}


@router.delete("/roles/{role_id}/overrides/{dungeon_key}")
def delete_dungeon_override(
    guild_id: int,
    role_id: int,
    dungeon_key: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not config_service.delete_dungeon_override(
        engine, guild_id, role_id, dungeon_key, actor_id=actor_id(admin),
    ):
        raise HTTPException(404, "No override for that dungeon")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Guild-wide raider / key-pop points
# ---------------------------------------------------------------------------
@router.get("/raider-points")
def get_raider_points(
    guild_id: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    return config_service.get_raider_points_config(engine, guild_id)


@router.put("/raider-points/{dungeon_key}")
def set_raider_points(
    guild_id: int,
    dungeon_key: str,
    body: PointsValue,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    config_service.set_raider_points(engine, guild_id, dungeon_key, body.points, actor_id=actor_id(admin))
    return {"dungeon_key": dungeon_key, "points": body.points}


@router.delete("/raider-points/{dungeon_key}")
def delete_raider_points(
    guild_id: int,
    dungeon_key: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not config_service.delete_raider_points(engine, guild_id, dungeon_key, actor_id=actor_id(admin)):
        raise HTTPException(404, "No raider points configured for that dungeon")
    return {"deleted": True}


@router.get("/key-pop-points")
def get_key_pop_points(
    guild_id: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    return config_service.get_key_pop_points_config(engine, guild_id)


@router.put("/key-pop-points/{dungeon_key}")
def set_key_pop_points(
    guild_id: int,
    dungeon_key: str,
    body: PointsValue,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    config_service.set_key_pop_points(engine, guild_id, dungeon_key, body.points, actor_id=actor_id(admin))
    return {"dungeon_key": dungeon_key, "points": body.points}


@router.delete("/key-pop-points/{dungeon_key}")
def delete_key_pop_points(
    guild_id: int,
    dungeon_key: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not config_service.delete_key_pop_points(engine, guild_id, dungeon_key, actor_id=actor_id(admin)):
        raise HTTPException(404, "No key-pop points configured for that dungeon")
    return {"deleted": True}
