"""Input validation helpers shared by the mastery engines."""

from __future__ import annotations

import math
from typing import Optional


class ValidationError(ValueError):
    """Raised when an engine input lies outside its documented domain."""


class ConcurrentUpdateError(RuntimeError):
    """Raised when a mastery record was modified since it was read."""

    def __init__(self, key: tuple, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Record {key!r} is at version {actual_version}, expected {expected_version}"
        )
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


def _require_number(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number, got {type(value).__name__}")
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{name} must be finite")
    return float(value)


def require_range(name: str, value: float, low: float, high: float) -> float:
    """Return ``value`` as float, raising :class:`ValidationError` when outside ``[low, high]``."""

    number = _require_number(name, value)
    if not low <= number <= high:
        raise ValidationError(f"{name} must be within [{low:g}, {high:g}], got {number:g}")
    return number


def require_non_negative(name: str, value: float) -> float:
    number = _require_number(name, value)
    if number < 0:
        raise ValidationError(f"{name} must be non-negative, got {number:g}")
    return number


def require_minimum(name: str, value: float, minimum: float) -> float:
    number = _require_number(name, value)
    if number < minimum:
        raise ValidationError(f"{name} must be >= {minimum:g}, got {number:g}")
    return number


def require_quality(value: int) -> int:
    """Quality scores are SM-2 buckets 0..5."""

    number = require_range("quality", value, 0, 5)
    if number != int(number):
        raise ValidationError(f"quality must be an integer, got {value}")
    return int(number)


def round_half_up(value: float, digits: Optional[int] = None) -> float:
    """Round ``.5`` away from the even neighbour, unlike the builtin ``round``.

    The scoring tables were calibrated with half-up rounding, so
    ``round_half_up(2.5) == 3`` where ``round(2.5) == 2``.
    """

    if digits is None:
        return float(math.floor(value + 0.5))
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: float) -> int:
    return int(round_half_up(value))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


__all__ = [
    "ValidationError",
    "ConcurrentUpdateError",
    "require_range",
    "require_non_negative",
    "require_minimum",
    "require_quality",
    "round_half_up",
    "round_int",
    "clamp",
]
