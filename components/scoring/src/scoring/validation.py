"""Input checks applied before anything touches the store."""

from __future__ import annotations

import re
from typing import Iterable

from scoring.config import RATING_MAX, RATING_MIN
from scoring.errors import ValidationError

_GMC_PATTERN = re.compile(r"\d{7}")


def is_valid_gmc(value: object) -> bool:
    """Return True when value is a 7-digit registration number.

    Examples:
        >>> is_valid_gmc("1234567")
        True
        >>> is_valid_gmc(" 1234567 ")
        True
        >>> is_valid_gmc("123456")
        False
    """
    if value is None:
        return False
    return bool(_GMC_PATTERN.fullmatch(str(value).strip()))


def require_gmc(value: object, label: str = "GMC") -> str:
    """Return the stripped id or raise ValidationError."""
    if not is_valid_gmc(value):
        raise ValidationError(f"Invalid {label}")
    return str(value).strip()


def require_outcome(value: object, outcomes: Iterable[str]) -> str:
    """Return the outcome if recognised, otherwise raise ValidationError."""
    allowed = tuple(outcomes)
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError("Invalid outcome")
    return value


def require_rating(value: object, label: str) -> int | None:
    """Validate an optional 1-10 integer rating.

    Args:
        value: Raw rating from the caller (None means not given).
        label: Rating name used in the error message.

    Returns:
        The rating as an int, or None when absent.

    Raises:
        ValidationError: If the value is not an integer in [1, 10].
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"Invalid {label}")
        value = int(value)
    try:
        rating = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}") from None
    if not RATING_MIN <= rating <= RATING_MAX:
        raise ValidationError(f"{label} must be between {RATING_MIN} and {RATING_MAX}")
    return rating


def normalise_name(value: str | None) -> str | None:
    """Collapse internal whitespace and strip; empty becomes None."""
    if not value:
        return None
    cleaned = re.sub(r"\s+", " ", str(value)).strip()
    return cleaned or None
