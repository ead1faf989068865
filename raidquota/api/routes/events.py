"""
raidquota.api.routes.events — Ledger endpoints
================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from raidquota.api.deps import get_current_caller, get_engine
from raidquota.constants import ActionType
from raidquota.database.models import QuotaEvent
from raidquota.services import ledger_service
from raidquota.services.ledger_service import LogResult

router = APIRouter(tags=["events"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EventCreate(BaseModel):
    guild_id: int
    actor_user_id: int
    action_type: str = ActionType.RUN_COMPLETED
    subject_id: str | None = Field(default=None, max_length=200)
    dungeon_key: str | None = Field(default=None, max_length=64)
    quota_points: float | None = None


# ---------------------------------------------------------------------------
# Helpers (shared with the other route modules)
# ---------------------------------------------------------------------------
def event_dict(e: QuotaEvent) -> dict:
    return {
        "id": e.id,
        "guild_id": str(e.guild_id),
        "actor_user_id": str(e.actor_user_id),
        "action_type": e.action_type,
        "subject_id": e.subject_id,
        "dungeon_key": e.dungeon_key,
        "points": float(e.points),
        "quota_points": float(e.quota_points),
        "quantity": e.quantity,
        "credit": str(e.credit),
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def log_result_dict(result: LogResult) -> dict:
    return {
        "duplicate": result.duplicate,
        "event": event_dict(result.event) if result.event is not None else None,
    }


# ---------------------------------------------------------------------------
# POST /events
# ---------------------------------------------------------------------------
@router.post("/events")
def create_event(
    body: EventCreate,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    """Append one event; a replayed run subject reports ``duplicate``."""
    try:
        result = ledger_service.log_event(
            engine,
            body.guild_id,
            body.actor_user_id,
            body.action_type,
            body.subject_id,
            body.dungeon_key,
            body.quota_points,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return log_result_dict(result)


@router.get("/guilds/{guild_id}/events")
def list_events(
    guild_id: int,
    user_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    rows = ledger_service.list_events(engine, guild_id, actor_user_id=user_id, limit=limit)
    return [event_dict(e) for e in rows]


@router.get("/guilds/{guild_id}/runs/{run_id}/logged")
def run_logged(
    guild_id: int,
    run_id: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    return {"logged": ledger_service.is_already_logged(engine, guild_id, run_id)}
