"""
raidquota.engine.points — Point Resolution Policy
===================================================

Pure resolution of "how many quota points is this dungeon worth to this
member".  The service layer loads the guild's rows and hands them in, so
the policy itself can be tested without a database.

Each role in scope gets an *effective value*:

1. its override for the dungeon, when one exists;
2. otherwise its base value (``base_exalt_points`` or
   ``base_non_exalt_points``, picked by the dungeon's category), when the
   role has a quota config.

The result is the maximum effective value across the scope, or
:data:`~raidquota.constants.DEFAULT_DUNGEON_POINTS` when no role in scope
has either.  The scope is the caller's roles when known, otherwise every
role configured in the guild.

Taking a maximum means a member holding several quota roles is never
shortchanged by which role is looked at first, and adding a role can only
raise or hold the result.

An override only outranks the base value of its own role.  Letting any
override win over every base (so a 1-point override on one role beats a
5-point base on another) breaks that monotonicity; do not reorder it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from raidquota.constants import DEFAULT_DUNGEON_POINTS


@dataclass(frozen=True, slots=True)
class RoleBase:
    exalt: float
    non_exalt: float

    def for_dungeon(self, is_exalt: bool) -> float:
        return self.exalt if is_exalt else self.non_exalt


def effective_role_points(
    role_id: int,
    *,
    overrides: Mapping[int, float],
    bases: Mapping[int, RoleBase],
    is_exalt: bool,
) -> float | None:
    """Override → base for a single role; ``None`` if the role has neither."""
    if role_id in overrides:
        return overrides[role_id]
    base = bases.get(role_id)
    if base is not None:
        return base.for_dungeon(is_exalt)
    return None


def resolve_points(
    *,
    overrides: Mapping[int, float],
    bases: Mapping[int, RoleBase],
    is_exalt: bool,
    role_ids: Iterable[int] | None = None,
    default: float = DEFAULT_DUNGEON_POINTS,
) -> float:
    """Resolve the point value for one dungeon.

    Parameters
    ----------
    overrides:
        ``role_id → points`` overrides for *this* dungeon in the guild.
    bases:
        ``role_id → RoleBase`` for every quota-configured role in the guild.
    is_exalt:
        Whether the dungeon is an Exaltation dungeon.
    role_ids:
        The member's roles.  Empty or ``None`` widens the scope to every
        role that has an override or a config in the guild.
    """
    scope = set(role_ids or ())
    if not scope:
        scope = set(overrides) | set(bases)

    values = [
        value
        for role_id in scope
        if (value := effective_role_points(
            role_id, overrides=overrides, bases=bases, is_exalt=is_exalt,
        )) is not None
    ]
    return max(values) if values else default


def sum_moderation_points(values: Iterable[float]) -> float:
    """Moderation credit stacks across roles; only positive values count."""
    return float(sum(v for v in values if v > 0))
