"""
raidquota.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for **infrastructure-only** settings (identity, API
port, leaderboard sizing).  Quota tuning — role requirements, overrides,
per-dungeon point values — lives in the database and is edited through the
config API.

Usage::

    from raidquota.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Raid Community"
    print(cfg.leaderboard_limit) # 50
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from raidquota.constants import DEFAULT_RESET_DAYS


@dataclass(frozen=True, slots=True)
class RaidQuotaConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # HTTP
    api_port: int

    # Quota defaults
    default_reset_days: int = DEFAULT_RESET_DAYS  # First reset for a new role config
    leaderboard_limit: int = 50
    role_leaderboard_limit: int | None = None  # None = every role member


def load_config(path: str | Path = "config.yaml") -> RaidQuotaConfig:
    """Read *path* and return a :class:`RaidQuotaConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    quota: dict = raw.get("quota") or {}
    role_limit = quota.get("role_leaderboard_limit")

    return RaidQuotaConfig(
        community_name=raw["community_name"],
        api_port=int(raw["api_port"]),
        default_reset_days=int(quota.get("default_reset_days", DEFAULT_RESET_DAYS)),
        leaderboard_limit=int(quota.get("leaderboard_limit", 50)),
        role_leaderboard_limit=int(role_limit) if role_limit else None,
    )
