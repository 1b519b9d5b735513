"""Validation rules applied to candidate states before they are committed."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
import math
import re
from typing import Any

from statevault.core.clock import now_ms
from statevault.core.paths import MISSING, StatePath

Predicate = Callable[[Any], bool]

_DAY_MS = 86_400_000
_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\s]+$")
_REALM_PATTERN = re.compile(r"^[a-zA-Z\s]+$")


@dataclass(frozen=True, slots=True)
class ValidationRule:
    """A predicate over the value found at ``path``.

    The predicate receives None when the path is absent from the candidate.
    """

    path: StatePath
    predicate: Predicate
    message: str

    def check(self, state: Any) -> bool:
        value = self.path.get(state)
        return bool(self.predicate(None if value is MISSING else value))


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_integer(value: Any) -> bool:
    return _is_number(value) and float(value).is_integer()


def optional_number(minimum: float, maximum: float, *, integer: bool = False) -> Predicate:
    """Accept None or a number within [minimum, maximum]."""
    check = _is_integer if integer else _is_number

    def predicate(value: Any) -> bool:
        return value is None or (check(value) and minimum <= value <= maximum)

    return predicate


def optional_string(pattern: re.Pattern[str], max_length: int) -> Predicate:
    """Accept None or a non-empty string matching ``pattern``."""

    def predicate(value: Any) -> bool:
        return value is None or (
            isinstance(value, str)
            and 1 <= len(value) <= max_length
            and pattern.match(value) is not None
        )

    return predicate


def optional_list(max_length: int) -> Predicate:
    """Accept None or a list of at most ``max_length`` entries."""

    def predicate(value: Any) -> bool:
        return value is None or (isinstance(value, list) and len(value) <= max_length)

    return predicate


def _timestamp(value: Any) -> bool:
    return value is None or (_is_number(value) and 0 <= value <= now_ms() + _DAY_MS)


def default_rules() -> list[ValidationRule]:
    """Rules guarding the default game state."""
    specs: Iterable[tuple[str, Predicate, str]] = [
        (
            "player.jade",
            optional_number(0, 1e12),
            "Jade must be a non-negative number under 1 trillion",
        ),
        (
            "player.spiritCrystals",
            optional_number(0, 1e9, integer=True),
            "Spirit crystals must be a non-negative integer under 1 billion",
        ),
        (
            "player.name",
            optional_string(_NAME_PATTERN, 50),
            "Player name must be 1-50 letters, digits, underscores, hyphens or spaces",
        ),
        (
            "cultivation.qi.level",
            optional_number(0, 10_000, integer=True),
            "Qi level must be an integer between 0 and 10000",
        ),
        (
            "cultivation.body.level",
            optional_number(0, 10_000, integer=True),
            "Body level must be an integer between 0 and 10000",
        ),
        (
            "realm.current",
            optional_string(_REALM_PATTERN, 100),
            "Realm must contain only letters and spaces",
        ),
        (
            "realm.stage",
            optional_number(1, 100, integer=True),
            "Realm stage must be an integer between 1 and 100",
        ),
        (
            "scriptures.collection",
            optional_list(1000),
            "Scripture collection holds at most 1000 entries",
        ),
        (
            "combat.wins",
            optional_number(0, 1e9, integer=True),
            "Combat wins must be a non-negative integer under 1 billion",
        ),
        (
            "combat.losses",
            optional_number(0, 1e9, integer=True),
            "Combat losses must be a non-negative integer under 1 billion",
        ),
        (
            "quests.completed",
            optional_list(10_000),
            "Completed quests hold at most 10000 entries",
        ),
        (
            "achievements.unlocked",
            optional_list(1000),
            "Unlocked achievements hold at most 1000 entries",
        ),
        (
            "lastSaveTime",
            _timestamp,
            "Last save time must not be more than 24 hours in the future",
        ),
        (
            "lastOnlineTime",
            _timestamp,
            "Last online time must not be more than 24 hours in the future",
        ),
    ]
    return [ValidationRule(StatePath.parse(path), check, message) for path, check, message in specs]
