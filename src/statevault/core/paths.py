"""Typed addressing into the state tree.

A StatePath is an immutable sequence of string segments. The dotted string
form (``"player.jade"``) only exists at the public API boundary; internally
the store, the diff and the validation rules work with segment tuples.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


class _Missing:
    """Sentinel type for absent values."""

    def __repr__(self) -> str:
        return "<MISSING>"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


@dataclass(frozen=True, slots=True, order=True)
class StatePath:
    """Immutable path of segments into a nested state tree.

    Attributes:
        segments: Path segments from the root, e.g. ("player", "jade").
    """

    segments: tuple[str, ...] = ()

    @classmethod
    def parse(cls, path: str | StatePath) -> StatePath:
        """Parse a dotted path string.

        Args:
            path: Dotted path (``"a.b.c"``) or an existing StatePath.

        Returns:
            The corresponding StatePath. The empty string is the root.

        Raises:
            ValueError: If the path contains an empty segment.
        """
        if isinstance(path, StatePath):
            return path
        if path == "":
            return cls()
        segments = tuple(path.split("."))
        if any(segment == "" for segment in segments):
            msg = f"Invalid state path: {path!r}"
            raise ValueError(msg)
        return cls(segments)

    @property
    def is_root(self) -> bool:
        return not self.segments

    @property
    def parent(self) -> StatePath:
        return StatePath(self.segments[:-1])

    def child(self, segment: str) -> StatePath:
        """Return the path one level below this one."""
        return StatePath((*self.segments, segment))

    def is_prefix_of(self, other: StatePath) -> bool:
        """Return True if ``other`` equals this path or lies beneath it."""
        return other.segments[: len(self.segments)] == self.segments

    def overlaps(self, other: StatePath) -> bool:
        """Return True if either path is an ancestor of (or equal to) the other."""
        return self.is_prefix_of(other) or other.is_prefix_of(self)

    def get(self, tree: Any) -> Any:
        """Resolve this path against a tree.

        Args:
            tree: Root of a nested mapping structure.

        Returns:
            The value found, or MISSING when any segment is absent or a
            non-mapping value is traversed.
        """
        current = tree
        for segment in self.segments:
            if not isinstance(current, Mapping) or segment not in current:
                return MISSING
            current = current[segment]
        return current

    def set(self, tree: dict[str, Any], value: Any) -> dict[str, Any]:
        """Return a copy of ``tree`` with ``value`` placed at this path.

        Intermediate mappings are copied along the path (and created where
        missing or non-mapping); siblings are shared with the input tree.

        Raises:
            ValueError: If this is the root path.
        """
        if self.is_root:
            msg = "Cannot set a value at the root path"
            raise ValueError(msg)
        head, *rest = self.segments
        result = dict(tree)
        if not rest:
            result[head] = value
            return result
        child = tree.get(head)
        if not isinstance(child, dict):
            child = {}
        result[head] = StatePath(tuple(rest)).set(child, value)
        return result

    def __str__(self) -> str:
        return ".".join(self.segments)

    def __repr__(self) -> str:
        return f"StatePath({str(self)!r})"
