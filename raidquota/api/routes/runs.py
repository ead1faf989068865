"""
raidquota.api.routes.runs — Run lifecycle triggers
====================================================

Called by the bot's run handlers at checkpoint (key pop) and run-end
transitions.  Rosters arrive as ``[{user_id, class_name}]``.  All triggers
are idempotent and safe to replay.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field

from raidquota.api.deps import get_current_caller, get_engine
from raidquota.api.routes.events import log_result_dict
from raidquota.services import run_service, snapshot_service
from raidquota.services.snapshot_service import AwardSummary, RosterEntry

router = APIRouter(prefix="/guilds/{guild_id}/runs/{run_id}", tags=["runs"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RosterMember(BaseModel):
    user_id: int
    class_name: str | None = Field(default=None, alias="class")

    model_config = {"populate_by_name": True}


class SnapshotRequest(BaseModel):
    roster: list[RosterMember] = Field(default_factory=list)


class AwardRequest(BaseModel):
    dungeon_key: str


class CompletionRequest(BaseModel):
    dungeon_key: str
    roster: list[RosterMember] = Field(default_factory=list)


class KeyPopRequest(BaseModel):
    dungeon_key: str
    roster: list[RosterMember] = Field(default_factory=list)
    popper_id: int | None = None


class OrganizerRequest(BaseModel):
    dungeon_key: str
    organizer_id: int
    role_ids: list[int] = Field(default_factory=list)


class RunEndRequest(BaseModel):
    dungeon_key: str
    organizer_id: int
    organizer_role_ids: list[int] = Field(default_factory=list)
    roster: list[RosterMember] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _roster(members: list[RosterMember]) -> list[RosterEntry]:
    return [RosterEntry(user_id=m.user_id, class_name=m.class_name) for m in members]


def _summary_dict(s: AwardSummary) -> dict:
    return {
        "run_id": str(s.run_id),
        "key_pop_number": s.key_pop_number,
        "points": s.points,
        "skipped_zero_points": s.skipped_zero_points,
        "awarded": s.awarded_count,
        "results": [
            {
                "user_id": str(r.user_id),
                "status": str(r.status),
                "event_id": r.event_id,
                "error": r.error,
            }
            for r in s.results
        ],
    }


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------
@router.post("/key-pops")
def pop_key(
    guild_id: int,
    run_id: int,
    body: KeyPopRequest,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    """Close the current checkpoint (if any) and snapshot the next one."""
    outcome = run_service.pop_key(
        engine, guild_id, run_id, body.dungeon_key, _roster(body.roster),
        popper_id=body.popper_id,
    )
    return {
        "key_pop_number": outcome.key_pop_number,
        "snapshotted": outcome.snapshotted,
        "closed": _summary_dict(outcome.closed) if outcome.closed else None,
    }


@router.post("/key-pops/{key_pop_number}/snapshot")
def snapshot_key_pop(
    guild_id: int,
    run_id: int,
    body: SnapshotRequest,
    key_pop_number: int = Path(ge=1),
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    inserted = snapshot_service.snapshot_key_pop(engine, run_id, key_pop_number, _roster(body.roster))
    return {"key_pop_number": key_pop_number, "snapshotted": inserted}


@router.post("/key-pops/{key_pop_number}/award")
def award_key_pop(
    guild_id: int,
    run_id: int,
    body: AwardRequest,
    key_pop_number: int = Path(ge=1),
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    summary = snapshot_service.award_key_pop(engine, guild_id, run_id, key_pop_number, body.dungeon_key)
    return _summary_dict(summary)


@router.get("/key-pops/{key_pop_number}")
def get_snapshot(
    guild_id: int,
    run_id: int,
    key_pop_number: int,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    return [
        {
            "user_id": str(row.user_id),
            "class": row.class_name,
            "awarded_completion": row.awarded_completion,
            "awarded_at": row.awarded_at.isoformat() if row.awarded_at else None,
        }
        for row in snapshot_service.get_snapshot(engine, run_id, key_pop_number)
    ]


# ---------------------------------------------------------------------------
# Whole-run awards
# ---------------------------------------------------------------------------
@router.post("/completion-award")
def award_on_completion(
    guild_id: int,
    run_id: int,
    body: CompletionRequest,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    summary = snapshot_service.award_on_completion(
        engine, guild_id, run_id, body.dungeon_key, _roster(body.roster),
    )
    return _summary_dict(summary)


@router.post("/organizer")
def award_organizer(
    guild_id: int,
    run_id: int,
    body: OrganizerRequest,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    result = run_service.award_organizer(
        engine, guild_id, run_id, body.organizer_id, body.dungeon_key, body.role_ids,
    )
    return log_result_dict(result)


@router.post("/end")
def end_run(
    guild_id: int,
    run_id: int,
    body: RunEndRequest,
    caller: dict = Depends(get_current_caller),
    engine=Depends(get_engine),
):
    outcome = run_service.end_run(
        engine, guild_id, run_id, body.dungeon_key, body.organizer_id, _roster(body.roster),
        organizer_role_ids=body.organizer_role_ids,
    )
    return {
        "organizer": log_result_dict(outcome.organizer),
        "raiders": _summary_dict(outcome.raiders),
    }
