"""Default state template for the cultivation game.

The template is the state a fresh StateStore starts from and what reset()
returns to. default_consistency_checker() derives a checker from it, so
load-time repair restores sections and leaves from the same source.
"""

from __future__ import annotations

from statevault.core.tree import deep_clone
from statevault.core.types import StateTree
from statevault.migration.engine import DEFAULT_VERSION
from statevault.validation.consistency import NumericRange, TreeConsistencyChecker

_CULTIVATION_PATH = {
    "level": 0,
    "experience": 0,
    "experienceRequired": 100,
    "baseRate": 1.0,
    "multiplier": 1.0,
}

_DEFAULT_STATE: StateTree = {
    "player": {
        "name": None,
        "jade": 500,
        "spiritCrystals": 100,
        "shards": 0,
        "power": 1.0,
        "offlineTime": 0,
        "availableTitles": [],
        "currentTitle": None,
    },
    "cultivation": {
        "qi": dict(_CULTIVATION_PATH),
        "body": dict(_CULTIVATION_PATH),
        "dual": {
            "level": 0,
            "experience": 0,
            "experienceRequired": 200,
            "baseRate": 0.5,
            "multiplier": 1.0,
            "unlocked": False,
        },
    },
    "realm": {
        "current": "Body Refinement",
        "stage": 1,
        "maxStage": 10,
        "breakthroughProgress": 0,
        "breakthroughRequired": 1000,
    },
    "scriptures": {
        "collection": [],
        "favorites": [],
    },
    "combat": {
        "wins": 0,
        "losses": 0,
        "rating": 1000,
    },
    "quests": {
        "active": [],
        "completed": [],
    },
    "achievements": {
        "unlocked": [],
    },
    "settings": {
        "autoSave": True,
        "theme": "dark",
        "notifications": True,
        "sound": True,
    },
    "meta": {
        "version": DEFAULT_VERSION,
        "createdAt": 0,
        "totalPlayTime": 0,
    },
    "lastSaveTime": None,
    "lastOnlineTime": None,
}

REQUIRED_SECTIONS = ("player", "cultivation", "realm", "settings", "meta")


def default_state() -> StateTree:
    """Return a fresh copy of the default game state."""
    return deep_clone(_DEFAULT_STATE)


def default_consistency_checker() -> TreeConsistencyChecker:
    """Build the consistency checker used for load-time repair."""
    template = default_state()
    return TreeConsistencyChecker(
        required_sections={section: template[section] for section in REQUIRED_SECTIONS},
        expected_types={
            "player.jade": (int, float),
            "player.spiritCrystals": int,
            "player.power": (int, float),
            "cultivation.qi.level": int,
            "cultivation.body.level": int,
            "cultivation.dual.level": int,
            "realm.current": str,
            "realm.stage": int,
            "settings.autoSave": bool,
        },
        ranges={
            "player.jade": NumericRange(0, 1e12),
            "player.spiritCrystals": NumericRange(0, 1e9),
            "realm.stage": NumericRange(1, 100),
        },
        defaults=template,
    )
