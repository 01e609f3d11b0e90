"""Utilities for working with star amounts in KidStars."""

from __future__ import annotations

from typing import Union

from .exceptions import ValidationError
from .models import Decision, StarType

AmountLike = Union[int, str]


def parse_star_type(value: StarType | str) -> StarType:
    """Return ``value`` as a :class:`StarType`."""

    if isinstance(value, StarType):
        return value
    try:
        return StarType(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown star type '{value}'.") from exc


def parse_decision(value: Decision | str) -> Decision:
    """Return ``value`` as a :class:`Decision` (``approve`` or ``reject``)."""

    if isinstance(value, Decision):
        return value
    try:
        return Decision(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown decision '{value}'.") from exc


def to_stars(value: AmountLike) -> int:
    """Convert ``value`` to a whole number of stars."""

    if isinstance(value, bool):
        raise ValidationError("Star amounts must be whole numbers, not booleans.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError as exc:
            raise ValidationError(f"'{value}' is not a whole number of stars.") from exc
    raise ValidationError(f"Unsupported star amount type: {type(value)!r}")


def require_positive(amount: int, *, allow_zero: bool = False) -> int:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < 0:
            raise ValidationError("Star amount must be zero or greater.")
    else:
        if amount <= 0:
            raise ValidationError("Star amount must be greater than zero.")
    return amount


def format_stars(amount: int) -> str:
    """Return ``amount`` as a short label (e.g. ``1 star`` or ``12 stars``)."""

    return f"{amount:,} star" if amount == 1 else f"{amount:,} stars"
