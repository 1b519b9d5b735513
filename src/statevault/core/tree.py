"""Pure functions over JSON-like state trees.

This module provides:
- deep_clone / deep_merge: copy and combine trees without aliasing
- compute_diff: structural comparison producing Change records
- ensure_serializable: reject cycles, non-string keys and foreign types
- canonical_json / compute_checksum: the integrity hash used by storage
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
import copy
from dataclasses import dataclass
from enum import StrEnum
import hashlib
import json
import math
from typing import Any

from statevault.core.errors import ValidationError
from statevault.core.paths import MISSING, StatePath

_SCALARS = (str, int, float, bool, type(None))


class ChangeKind(StrEnum):
    """Kind of structural change between two trees."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class Change:
    """A single leaf-level difference between two trees.

    Attributes:
        path: Location of the change.
        old_value: Previous value, or MISSING if the key was added.
        new_value: New value, or MISSING if the key was removed.
        kind: Whether the value was added, changed or removed.
    """

    path: StatePath
    old_value: Any
    new_value: Any
    kind: ChangeKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "old_value": None if self.old_value is MISSING else self.old_value,
            "new_value": None if self.new_value is MISSING else self.new_value,
            "kind": self.kind.value,
        }


def deep_clone(tree: Any) -> Any:
    """Return a fully independent copy of a tree."""
    return copy.deepcopy(tree)


def deep_merge(base: Mapping[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``updates`` into a copy of ``base``.

    Mappings present on both sides are merged recursively. Lists and scalars
    from ``updates`` replace the value in ``base`` outright.

    Args:
        base: The tree to merge into. Not modified.
        updates: Partial tree of values to apply. Not modified.

    Returns:
        A new tree sharing no mutable structure with either input.
    """
    result = deep_clone(dict(base))
    for key, value in updates.items():
        current = result.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = deep_clone(value)
    return result


def compute_diff(
    old: Any,
    new: Any,
    path: StatePath | None = None,
) -> list[Change]:
    """Compute leaf-level changes between two trees.

    Mappings are compared key by key; any other values (lists included) are
    compared by equality and reported as a single change at their path.

    Args:
        old: Previous tree.
        new: Updated tree.
        path: Path prefix of the compared subtrees.

    Returns:
        Changes in key order of ``new`` followed by removed keys of ``old``.
    """
    return list(_iter_diff(old, new, path or StatePath()))


def _iter_diff(old: Any, new: Any, path: StatePath) -> Iterator[Change]:
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        for key, new_value in new.items():
            yield from _iter_diff(old.get(key, MISSING), new_value, path.child(key))
        for key, old_value in old.items():
            if key not in new:
                yield Change(path.child(key), old_value, MISSING, ChangeKind.REMOVED)
        return

    if old is MISSING:
        yield Change(path, MISSING, deep_clone(new), ChangeKind.ADDED)
    elif new is MISSING:
        yield Change(path, deep_clone(old), MISSING, ChangeKind.REMOVED)
    elif type(old) is not type(new) or old != new:
        yield Change(path, deep_clone(old), deep_clone(new), ChangeKind.CHANGED)


def ensure_serializable(tree: Any, path: StatePath | None = None) -> None:
    """Check that a value is a pure, acyclic JSON-like data tree.

    Args:
        tree: Value to check.
        path: Path of ``tree`` inside the enclosing state, for error messages.

    Raises:
        ValidationError: On cycles, non-string keys, non-finite floats,
            strings with lone surrogates or values that are not dicts,
            lists or JSON scalars.
    """
    _check_node(tree, path or StatePath(), set())


def _check_node(node: Any, path: StatePath, active: set[int]) -> None:
    if isinstance(node, float) and not math.isfinite(node):
        raise ValidationError(
            f"Non-finite number at '{path}'", path=str(path), value=node
        )
    if isinstance(node, str):
        _check_text(node, path, "string")
        return
    if isinstance(node, _SCALARS):
        return
    if not isinstance(node, (dict, list)):
        raise ValidationError(
            f"Unsupported type {type(node).__name__} at '{path}'",
            path=str(path),
            value=node,
        )

    marker = id(node)
    if marker in active:
        raise ValidationError(f"Circular reference at '{path}'", path=str(path))
    active.add(marker)
    try:
        if isinstance(node, dict):
            for key, value in node.items():
                if not isinstance(key, str):
                    raise ValidationError(
                        f"Non-string key {key!r} at '{path}'", path=str(path)
                    )
                _check_text(key, path, "key")
                _check_node(value, path.child(key), active)
        else:
            for index, value in enumerate(node):
                _check_node(value, path.child(str(index)), active)
    finally:
        active.discard(marker)


def _check_text(text: str, path: StatePath, what: str) -> None:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValidationError(
            f"Invalid UTF-8 {what} at '{path}' (lone surrogate)",
            path=str(path),
            details={"position": e.start},
        ) from e


def canonical_json(data: Any) -> str:
    """Serialize data deterministically (sorted keys, compact separators)."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def compute_checksum(data: Any) -> str:
    """Return the SHA-256 hex digest of the canonical JSON of ``data``."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()
