"""Consistency checking for persisted state trees."""

from statevault.validation.consistency import (
    ConsistencyChecker,
    CorruptionReport,
    NumericRange,
    RepairResult,
    Severity,
    TreeConsistencyChecker,
)

__all__ = [
    "ConsistencyChecker",
    "CorruptionReport",
    "NumericRange",
    "RepairResult",
    "Severity",
    "TreeConsistencyChecker",
]
