"""Rater-relative normalisation of subjective 1-10 ratings.

Each radiologist has their own habits: one rater's 7 can mean what another
rater's 9 means. A new rating is expressed as a z-score against the rater's
earlier ratings for the same dimension and re-centred on 5 of the 1-10 scale.

Normalised values are computed once, when the rating is submitted, and
stored. They are not recomputed when the rater's distribution later shifts,
so stored values remain the audit record of what was shown at the time.
"""

from __future__ import annotations

from statistics import fmean, pstdev
from typing import Callable, Literal, Sequence

from scoring.config import RATING_MAX, RATING_MIN

Dimension = Literal["quality", "appropriateness"]
DIMENSIONS: tuple[Dimension, ...] = ("quality", "appropriateness")

MIN_PRIOR_RATINGS = 2
CENTRE = 5.0


def normalize_rating(raw: int | None, prior: Sequence[int]) -> float | None:
    """Normalise one raw rating against a rater's earlier ratings.

    Args:
        raw: The rating being submitted, or None when the rater skipped it.
        prior: The rater's ratings already on file for this dimension,
            excluding ``raw``.

    Returns:
        None when ``raw`` is None; ``raw`` unchanged when fewer than two
        prior ratings exist; 5.0 when every prior rating is identical;
        otherwise ``clamp(5 + (raw - mean) / stdev, 1, 10)`` using the
        population standard deviation.

    Examples:
        >>> normalize_rating(7, [])
        7.0
        >>> normalize_rating(9, [6, 6, 6])
        5.0
        >>> normalize_rating(8, [6, 8, 10])
        5.0
    """
    if raw is None:
        return None
    if len(prior) < MIN_PRIOR_RATINGS:
        return float(raw)

    mean = fmean(prior)
    sigma = pstdev(prior, mu=mean)
    if sigma == 0:
        return CENTRE

    z_score = (raw - mean) / sigma
    return min(float(RATING_MAX), max(float(RATING_MIN), CENTRE + z_score))


class RaterNormalizer:
    """Normalise ratings using a rater history lookup.

    Args:
        history: Callable returning a rater's prior raw ratings for a
            dimension, oldest first. The store backs this in production.
    """

    def __init__(self, history: Callable[[str, Dimension], Sequence[int]]) -> None:
        self._history = history

    def normalize(
        self, rater_id: str, dimension: Dimension, raw: int | None
    ) -> float | None:
        """Normalise ``raw`` against everything the rater has on file."""
        if raw is None:
            return None
        return normalize_rating(raw, self._history(rater_id, dimension))
