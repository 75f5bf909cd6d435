"""Utilities for working with point values in Points Bank."""

from __future__ import annotations

from typing import Union

from .exceptions import InvalidArgumentError

PointsLike = Union[int, str]


def to_points(value: PointsLike) -> int:
    """Convert ``value`` to an integer point amount without coercing fractions."""

    if isinstance(value, bool):
        raise InvalidArgumentError("Points must be an integer, not a boolean.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError as exc:
            raise InvalidArgumentError(f"Points must be a whole number: {value!r}") from exc
    raise InvalidArgumentError(f"Unsupported points type: {type(value)!r}")


def require_positive(points: int, *, allow_zero: bool = False) -> int:
    """Ensure ``points`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if points < 0:
            raise InvalidArgumentError("Points must be zero or greater.")
    else:
        if points <= 0:
            raise InvalidArgumentError("Points must be greater than zero.")
    return points


def require_nonzero(points: int) -> int:
    """Ensure ``points`` describes an actual movement."""

    if points == 0:
        raise InvalidArgumentError("A ledger entry cannot move zero points.")
    return points


__all__ = ["PointsLike", "require_nonzero", "require_positive", "to_points"]
