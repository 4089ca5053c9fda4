"""Composite 0-10 requestor rating."""

from __future__ import annotations

from typing import Iterable

POINTS_SCALE = 1000
RATING_CEILING = 10.0


def mean_or_none(values: Iterable[float | None]) -> float | None:
    """Average the non-null values, None when there are none."""
    present = [value for value in values if value is not None]
    if not present:
        return None
    return sum(present) / len(present)


def preferred_rating(normalized: float | None, raw: int | None) -> float | None:
    """Prefer the stored normalised rating, falling back to the raw one."""
    if normalized is not None:
        return normalized
    return float(raw) if raw is not None else None


def composite_rating(
    avg_quality: float | None,
    avg_appropriateness: float | None,
    points: int | float,
) -> float:
    """Blend average ratings with accumulated points into a 0-10 score.

    Points pull the rating from the ratings average towards the ceiling:
    zero points leaves the average untouched, 1000 points gives 10.

    Args:
        avg_quality: Mean normalised quality rating (None counts as 0).
        avg_appropriateness: Mean normalised appropriateness rating
            (None counts as 0).
        points: Requester's running points total.

    Returns:
        Rating in [0, 10].

    Examples:
        >>> composite_rating(0, 0, 0)
        0.0
        >>> composite_rating(4, 6, 1000)
        10.0
        >>> composite_rating(None, None, 500)
        5.0
    """
    base = ((avg_quality or 0.0) + (avg_appropriateness or 0.0)) / 2
    capped_points = min(POINTS_SCALE, max(0, points))
    weight = capped_points / POINTS_SCALE
    rating = base * (1 - weight) + RATING_CEILING * weight
    return min(RATING_CEILING, max(0.0, rating))
