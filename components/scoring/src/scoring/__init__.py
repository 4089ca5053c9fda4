"""Scoring, normalisation and ranking for out-of-hours CT vetting."""

from scoring.config import ScoringConfig, table_for_version
from scoring.errors import NotFoundError, PersistenceError, ScoringError, ValidationError
from scoring.normalizer import RaterNormalizer, normalize_rating
from scoring.ranking import (
    GAP,
    RankedRequester,
    RankingWindow,
    RequesterStats,
    rank_requesters,
    window_around,
)
from scoring.rating import composite_rating

__all__ = [
    "GAP",
    "NotFoundError",
    "PersistenceError",
    "RankedRequester",
    "RankingWindow",
    "RaterNormalizer",
    "RequesterStats",
    "ScoringConfig",
    "ScoringError",
    "ValidationError",
    "composite_rating",
    "normalize_rating",
    "rank_requesters",
    "table_for_version",
    "window_around",
]
