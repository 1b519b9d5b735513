"""Core types for statevault - Result type and state tree aliases.

This module provides:
- Result[T, E]: A generic type for expected failures (storage, migration)
- Type aliases for the JSON-like state tree
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast


@dataclass(frozen=True, slots=True)
class Result[T, E]:
    """Either a success value (Ok) or an expected failure (Err).

    Storage and migration operations return Result rather than raising, so a
    failed save or an unreachable schema version can be handled by the caller
    without exception plumbing. Exceptions remain for caller misuse.

    Usage:
        result = await engine.save("slot1", state)
        if result.is_ok:
            receipt = result.value
        else:
            log.warning("save.failed", error=str(result.error))
    """

    _value: T | None
    _error: E | None
    _is_ok: bool

    @classmethod
    def ok(cls, value: T) -> Result[T, E]:
        """Create a successful Result.

        Args:
            value: The success value to wrap.

        Returns:
            A Result in the Ok state.
        """
        return cls(_value=value, _error=None, _is_ok=True)

    @classmethod
    def err(cls, error: E) -> Result[T, E]:
        """Create a failed Result.

        Args:
            error: The error value to wrap.

        Returns:
            A Result in the Err state.
        """
        return cls(_value=None, _error=error, _is_ok=False)

    @property
    def is_ok(self) -> bool:
        """Return True if this Result holds a value."""
        return self._is_ok

    @property
    def is_err(self) -> bool:
        """Return True if this Result holds an error."""
        return not self._is_ok

    def __repr__(self) -> str:
        if self._is_ok:
            return f"Ok({self._value!r})"
        return f"Err({self._error!r})"

    @property
    def value(self) -> T:
        """Return the Ok value, raising ValueError on Err."""
        if not self._is_ok:
            msg = "Cannot access value on Err result"
            raise ValueError(msg)
        return cast(T, self._value)

    @property
    def error(self) -> E:
        """Return the Err value, raising ValueError on Ok."""
        if self._is_ok:
            msg = "Cannot access error on Ok result"
            raise ValueError(msg)
        return cast(E, self._error)

    def unwrap(self) -> T:
        """Return the Ok value or raise ValueError carrying the error text."""
        if self._is_ok:
            return cast(T, self._value)
        raise ValueError(str(self._error))

    def unwrap_or(self, default: T) -> T:
        """Return the Ok value, or ``default`` when this Result is Err."""
        if self._is_ok:
            return cast(T, self._value)
        return default

    def map[U](self, fn: Callable[[T], U]) -> Result[U, E]:
        """Apply ``fn`` to the Ok value, passing an Err through unchanged."""
        if self._is_ok:
            return Result.ok(fn(cast(T, self._value)))
        return Result.err(cast(E, self._error))

    def map_err[F](self, fn: Callable[[E], F]) -> Result[T, F]:
        """Apply ``fn`` to the Err value, passing an Ok through unchanged."""
        if self._is_ok:
            return Result.ok(cast(T, self._value))
        return Result.err(fn(cast(E, self._error)))

    def and_then[U](self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain a Result-producing step onto an Ok value.

        Args:
            fn: Function taking the Ok value and returning a new Result.

        Returns:
            The result of ``fn`` if Ok, or the original Err.
        """
        if self._is_ok:
            return fn(cast(T, self._value))
        return Result.err(cast(E, self._error))


StateTree = dict[str, Any]
"""A JSON-like state tree: str-keyed dicts of scalars, lists and dicts."""
