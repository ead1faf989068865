"""
raidquota.constants — Shared Constants & Helpers
==================================================

Single source of truth for the dungeon catalog, ledger action types, and
the fallback point values used when nothing is configured.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Ledger action types
# ---------------------------------------------------------------------------
class ActionType:
    """``quota_event.action_type`` values."""
    RUN_COMPLETED = "run_completed"
    VERIFY_MEMBER = "verify_member"


ACTION_TYPES: frozenset[str] = frozenset({
    ActionType.RUN_COMPLETED,
    ActionType.VERIFY_MEMBER,
})

# Quota points credited when a caller does not supply an explicit value.
DEFAULT_ACTION_QUOTA_POINTS: dict[str, float] = {
    ActionType.RUN_COMPLETED: 1.0,
    ActionType.VERIFY_MEMBER: 1.0,
}


# ---------------------------------------------------------------------------
# Fallback point values
# ---------------------------------------------------------------------------
DEFAULT_DUNGEON_POINTS: float = 1.0
DEFAULT_RAIDER_POINTS: float = 1.0
DEFAULT_KEY_POP_POINTS: float = 5.0
DEFAULT_BASE_POINTS: float = 1.0
DEFAULT_RESET_DAYS: int = 7

# Moderation commands and the quota_role_config column holding their value.
MODERATION_POINT_FIELDS: dict[str, str] = {
    "verify": "verify_points",
    "warn": "warn_points",
    "suspend": "suspend_points",
    "modmail_reply": "modmail_reply_points",
    "editname": "editname_points",
    "addnote": "addnote_points",
}


# ---------------------------------------------------------------------------
# Leaderboard categories
# ---------------------------------------------------------------------------
class LeaderboardCategory:
    RUNS_ORGANIZED = "runs_organized"
    DUNGEON_COMPLETIONS = "dungeon_completions"
    POINTS = "points"
    QUOTA_POINTS = "quota_points"
    KEYS_POPPED = "keys_popped"


LEADERBOARD_CATEGORIES: tuple[str, ...] = (
    LeaderboardCategory.RUNS_ORGANIZED,
    LeaderboardCategory.DUNGEON_COMPLETIONS,
    LeaderboardCategory.POINTS,
    LeaderboardCategory.QUOTA_POINTS,
    LeaderboardCategory.KEYS_POPPED,
)


# ---------------------------------------------------------------------------
# Dungeon catalog
# ---------------------------------------------------------------------------
EXALTATION = "Exaltation Dungeons"


@dataclass(frozen=True, slots=True)
class Dungeon:
    code: str
    name: str
    category: str


DUNGEONS: tuple[Dungeon, ...] = (
    Dungeon("SHATTERS", "Shatters", EXALTATION),
    Dungeon("NEST", "Nest", EXALTATION),
    Dungeon("ADVANCED_NEST", "Advanced Nest", EXALTATION),
    Dungeon("FUNGAL_CAVERN", "Fungal Cavern", EXALTATION),
    Dungeon("CULTIST_HIDEOUT", "Cultist Hideout", EXALTATION),
    Dungeon("THE_VOID", "Void", EXALTATION),
    Dungeon("LOST_HALLS", "Lost Halls", EXALTATION),
    Dungeon("ORYX_3", "Oryx 3", EXALTATION),
    Dungeon("MOONLIGHT VILLAGE", "Moonlight Village", EXALTATION),
    Dungeon("STEAMWORKS", "Steamworks", EXALTATION),
    Dungeon("ADVANCED STEAMWORKS", "Advanced Steamworks", EXALTATION),
    Dungeon("ICE_CITADEL", "Ice Citadel", EXALTATION),
    Dungeon("SPECTRAL_PENITENTIARY", "Spectral Penitentiary", EXALTATION),

    Dungeon("TOMB_OF_THE_ANCIENTS", "Tomb of the Ancients", "Event Dungeons"),
    Dungeon("OCEAN_TRENCH", "Ocean Trench", "Event Dungeons"),
    Dungeon("ICE_CAVE", "Ice Cave", "Event Dungeons"),
    Dungeon("TOXIC_SEWERS", "Toxic Sewers", "Event Dungeons"),
    Dungeon("HAUNTED_CEMETERY", "Haunted Cemetery", "Event Dungeons"),
    Dungeon("PARASITE_CHAMBERS", "Parasite Chambers", "Event Dungeons"),
    Dungeon("DAVY_JONES_LOCKER", "Davy Jones' Locker", "Event Dungeons"),
    Dungeon("MOUNTAIN_TEMPLE", "Mountain Temple", "Event Dungeons"),
    Dungeon("LAIR_OF_DRACONIS", "Lair of Draconis", "Event Dungeons"),

    Dungeon("DEADWATER_DOCKS", "Deadwater Docks", "Epic Dungeons"),
    Dungeon("WOODLAND_LABYRINTH", "Woodland Labyrinth", "Epic Dungeons"),
    Dungeon("CRAWLING_DEPTHS", "Crawling Depths", "Epic Dungeons"),

    Dungeon("PUPPET_MASTERS_THEATRE", "Puppet Master's Theatre", "Mini Dungeons"),
    Dungeon("LAIR_OF_SHAITAN", "Lair of Shaitan", "Mini Dungeons"),
    Dungeon("PUPPET_MASTERS_ENCORE", "Puppet Master's Encore", "Mini Dungeons"),
    Dungeon("CNIDARIAN_REEF", "Cnidarian Reef", "Mini Dungeons"),
    Dungeon("SECLUDED_THICKET", "Secluded Thicket", "Mini Dungeons"),
    Dungeon("HIGH_TECH_TERROR", "High Tech Terror", "Mini Dungeons"),
    Dungeon("BATTLE_FOR_THE_NEXUS", "Battle for the Nexus", "Mini Dungeons"),
    Dungeon("BELLADONNAS_GARDEN", "Belladonna's Garden", "Mini Dungeons"),
    Dungeon("ICE_TOMB", "Ice Tomb", "Mini Dungeons"),
    Dungeon("MAD_GOD_MAYHEM", "Mad God Mayhem", "Mini Dungeons"),
    Dungeon("HIDDEN_INTERREGNUM", "Hidden Interregnum", "Mini Dungeons"),
    Dungeon("MACHINE", "Machine", "Mini Dungeons"),

    Dungeon("HEROIC_UNDEAD_LAIR", "Heroic Undead Lair", "Heroic Dungeons"),
    Dungeon("HEROIC_ABYSS_OF_DEMONS", "Heroic Abyss of Demons", "Heroic Dungeons"),

    Dungeon("WETLANDS_KEY", "Sulfurous Wetlands", "Godland Dungeons"),
    Dungeon("SNAKE_PIT", "Snake Pit", "Godland Dungeons"),
    Dungeon("MAGIC_WOODS", "Magic Woods", "Godland Dungeons"),
    Dungeon("SPRITE_WORLD", "Sprite World", "Godland Dungeons"),
    Dungeon("CAVE_THOUSAND_TREASURES", "Cave of a Thousand Treasures", "Godland Dungeons"),
    Dungeon("UNDEAD_LAIR", "Undead Lair", "Godland Dungeons"),
    Dungeon("ABYSS_OF_DEMONS", "Abyss of Demons", "Godland Dungeons"),
    Dungeon("MANOR_OF_THE_IMMORTALS", "Manor of the Immortals", "Godland Dungeons"),
    Dungeon("MAD_LAB", "Mad Lab", "Godland Dungeons"),
    Dungeon("CURSED_LIBRARY", "Cursed Library", "Godland Dungeons"),

    Dungeon("ANCIENT_RUINS", "Ancient Ruins", "Basic Dungeons"),
    Dungeon("CANDYLAND_HUNTING_GROUNDS", "Candyland Hunting Grounds", "Basic Dungeons"),
    Dungeon("REALM_DUNGEON", "Realm Dungeon", "Basic Dungeons"),
)

DUNGEON_BY_CODE: dict[str, Dungeon] = {d.code: d for d in DUNGEONS}


def is_exalt_dungeon(code: str | None) -> bool:
    """True when *code* is a catalogued Exaltation dungeon.

    Unknown codes are treated as non-exalt so a typo never earns the
    (usually higher) exalt base value.
    """
    if not code:
        return False
    dungeon = DUNGEON_BY_CODE.get(code)
    return dungeon is not None and dungeon.category == EXALTATION


def dungeon_name(code: str) -> str:
    """Display name for *code*, or the code itself when it isn't catalogued."""
    dungeon = DUNGEON_BY_CODE.get(code)
    return dungeon.name if dungeon else code
