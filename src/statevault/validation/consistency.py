"""Consistency checking and repair for loaded or migrated state trees.

The storage and migration engines consume a ConsistencyChecker when one is
injected and skip the check when none is. TreeConsistencyChecker is a
data-driven implementation: required top-level sections, expected leaf types
and numeric ranges, each with a severity.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
import math
from typing import Any, Protocol, runtime_checkable

from statevault.core.paths import MISSING, StatePath
from statevault.core.tree import deep_clone
from statevault.core.types import StateTree
from statevault.observability.logging import get_logger

log = get_logger(__name__)


class Severity(IntEnum):
    """Corruption severity, ordered so max() picks the worst."""

    NONE = 0
    MINOR = 1
    MODERATE = 2
    SEVERE = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class CorruptionReport:
    """Result of a corruption check.

    Attributes:
        severity: Worst severity among the issues found.
        issues: Human-readable descriptions of each problem.
    """

    severity: Severity = Severity.NONE
    issues: tuple[str, ...] = ()

    @property
    def is_corrupted(self) -> bool:
        return self.severity > Severity.NONE

    @property
    def is_recoverable(self) -> bool:
        return self.severity < Severity.SEVERE


@dataclass(frozen=True, slots=True)
class RepairResult:
    """Result of a repair attempt.

    Attributes:
        success: Whether the returned data passes the checker.
        data: Repaired tree (a copy), or None when repair was impossible.
        repairs: Descriptions of each change made.
    """

    success: bool
    data: StateTree | None
    repairs: tuple[str, ...] = ()


@runtime_checkable
class ConsistencyChecker(Protocol):
    """Checker consulted opportunistically by load and migrate paths."""

    def check_corruption(self, data: Any) -> CorruptionReport: ...

    def repair_data(self, data: Any) -> RepairResult: ...


@dataclass(frozen=True, slots=True)
class NumericRange:
    """Inclusive bounds for a numeric leaf."""

    minimum: float = -math.inf
    maximum: float = math.inf

    def clamp(self, value: float) -> float:
        return min(max(value, self.minimum), self.maximum)

    def __contains__(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


@dataclass
class TreeConsistencyChecker:
    """Rule-table checker for state trees.

    Missing required sections are MODERATE, wrong leaf types and out-of-range
    numbers are MINOR, and a non-mapping root is SEVERE.

    Attributes:
        required_sections: Top-level keys that must exist, mapped to the
            default subtree used by repair.
        expected_types: Dotted paths mapped to the type (or types) of the
            leaf found there. Absent leaves are not an issue.
        ranges: Dotted paths of numeric leaves mapped to allowed bounds.
        defaults: Tree consulted for replacement values during type repair.
    """

    required_sections: Mapping[str, StateTree] = field(default_factory=dict)
    expected_types: Mapping[str, type | tuple[type, ...]] = field(default_factory=dict)
    ranges: Mapping[str, NumericRange] = field(default_factory=dict)
    defaults: StateTree = field(default_factory=dict)

    def check_corruption(self, data: Any) -> CorruptionReport:
        """Classify problems in ``data`` without modifying it."""
        if not isinstance(data, Mapping):
            return CorruptionReport(Severity.SEVERE, ("Data is not a mapping",))

        issues: list[str] = []
        severity = Severity.NONE

        for section in self.required_sections:
            if section not in data:
                issues.append(f"Missing required section: {section}")
                severity = max(severity, Severity.MODERATE)

        for path, expected in self.expected_types.items():
            value = StatePath.parse(path).get(data)
            if value is not MISSING and not _matches(value, expected):
                issues.append(f"{path} has unexpected type {type(value).__name__}")
                severity = max(severity, Severity.MINOR)

        for path, bounds in self.ranges.items():
            value = StatePath.parse(path).get(data)
            if _is_number(value) and value not in bounds:
                issues.append(f"{path} out of range: {value}")
                severity = max(severity, Severity.MINOR)

        return CorruptionReport(severity, tuple(issues))

    def repair_data(self, data: Any) -> RepairResult:
        """Return a repaired copy of ``data``.

        Non-mapping data cannot be repaired. Missing sections are restored
        from their defaults, mistyped leaves are replaced by the matching
        default leaf, and out-of-range numbers are clamped.
        """
        if not isinstance(data, Mapping):
            return RepairResult(success=False, data=None)

        repaired: StateTree = deep_clone(dict(data))
        repairs: list[str] = []

        for section, default in self.required_sections.items():
            if section not in repaired:
                repaired[section] = deep_clone(default)
                repairs.append(f"Restored missing section: {section}")

        for path, expected in self.expected_types.items():
            state_path = StatePath.parse(path)
            value = state_path.get(repaired)
            if value is MISSING or _matches(value, expected):
                continue
            default = state_path.get(self.defaults)
            if default is MISSING or not _matches(default, expected):
                continue
            repaired = state_path.set(repaired, deep_clone(default))
            repairs.append(f"Reset {path} to default")

        for path, bounds in self.ranges.items():
            state_path = StatePath.parse(path)
            value = state_path.get(repaired)
            if _is_number(value) and value not in bounds:
                repaired = state_path.set(repaired, type(value)(bounds.clamp(value)))
                repairs.append(f"Clamped {path} into range")

        if repairs:
            log.info("validation.data.repaired", repairs=repairs)

        report = self.check_corruption(repaired)
        return RepairResult(
            success=not report.is_corrupted,
            data=repaired,
            repairs=tuple(repairs),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches(value: Any, expected: type | tuple[type, ...]) -> bool:
    types = expected if isinstance(expected, tuple) else (expected,)
    if isinstance(value, bool) and bool not in types:
        return False
    return isinstance(value, types)
