"""
RaidQuota — Points & Quota Accounting for Raid-Community Discord Bots
======================================================================
Records who organized, verified, and completed group runs, resolves how
many points each action is worth, and turns the resulting ledger into
role-quota panels, leaderboards, and per-member stats.  The Discord bot
itself talks to this engine over HTTP.

Package layout::

    raidquota/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Dungeon catalog, action types, defaults
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Ledger, config, snapshot and audit tables
    ├── engine/
    │   ├── subjects.py    # subject_id wire format (encode / parse)
    │   ├── points.py      # Pure point-resolution policy
    │   └── periods.py     # Quota period window calculation
    ├── services/
    │   ├── ledger_service.py      # Idempotent event ledger
    │   ├── config_service.py      # Audited quota configuration
    │   ├── points_service.py      # DB-backed point resolution
    │   ├── snapshot_service.py    # Key-pop snapshots + completion awards
    │   ├── run_service.py         # Organizer awards, key pops, run end
    │   ├── adjustment_service.py  # Manual logs, adjustments, moderation
    │   └── stats_service.py       # Leaderboards + user stats
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine/config/auth dependencies
        └── routes/        # Events, config, runs, stats, adjustments
"""

__version__ = "0.1.0"
