"""Store-backed rankings and rating trends.

Both are recomputed on every call from one grouped query; populations are
single-institution sized so nothing is cached.
"""

from __future__ import annotations

import logging
from datetime import datetime

from scoring.config import ScoringConfig
from scoring.ranking import (
    DEFAULT_HALF_SPAN,
    DEFAULT_LIMIT,
    RankedRequester,
    RankingWindow,
    rank_requesters,
    resolve_metric,
    window_around,
)
from scoring.trends import (
    TrendPage,
    bucket_samples,
    build_grid,
    has_more_history,
    validate_trend_query,
)
from scoring.validation import require_gmc

from api_service.storage import Storage, as_naive_utc, utcnow

logger = logging.getLogger(__name__)


class Leaderboard:
    """Rankings and trends over the episode log."""

    def __init__(self, storage: Storage, config: ScoringConfig | None = None) -> None:
        self._storage = storage
        self.config = config or ScoringConfig.from_env()

    def compute_rankings(
        self,
        metric: str,
        *,
        hospital: str | None = None,
        specialty: str | None = None,
    ) -> list[RankedRequester]:
        """Rank requesters, optionally restricted to a hospital and/or specialty."""
        canonical = resolve_metric(metric)
        population = self._storage.requester_stats(
            hospital=(hospital or "").strip() or None,
            specialty=(specialty or "").strip() or None,
        )
        for stats in population:
            stats.points = self.config.clamp_points(stats.points)
        return rank_requesters(population, canonical)

    def ranking_window(
        self,
        metric: str,
        *,
        hospital: str | None = None,
        specialty: str | None = None,
        target_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        half_span: int = DEFAULT_HALF_SPAN,
    ) -> RankingWindow:
        """Top rows plus the slice around ``target_id``, with its percentile."""
        if target_id:
            target_id = require_gmc(target_id)
        ranked = self.compute_rankings(metric, hospital=hospital, specialty=specialty)
        return window_around(ranked, target_id or None, limit, half_span)

    def trends(
        self,
        *,
        interval: str = "week",
        mode: str = "norm",
        limit: int = 12,
        page: int = 0,
        requester_id: str | None = None,
        now: datetime | None = None,
    ) -> TrendPage:
        """Episode counts and rating averages per calendar period.

        Args:
            interval: "day", "week" (ISO-8601) or "month".
            mode: "raw" ratings or "norm" (normalised, raw fallback).
            limit: Periods per page.
            page: Page offset, 0 being the most recent periods.
            requester_id: Restrict to one requester's episodes.
            now: Reference time for the grid; defaults to now (UTC).
        """
        validate_trend_query(interval, mode, limit, page)
        if requester_id:
            requester_id = require_gmc(requester_id)

        grid = build_grid(
            as_naive_utc(now) if now else utcnow(), interval, limit, page  # type: ignore[arg-type]
        )
        samples = self._storage.rating_samples(
            since=grid[0].start,
            normalized=mode == "norm",
            requester_gmc=requester_id,
        )
        periods = bucket_samples(grid, samples, interval)  # type: ignore[arg-type]
        earliest = self._storage.earliest_episode_at(requester_id)
        return TrendPage(
            interval=interval,
            mode=mode,
            page=page,
            limit=limit,
            periods=periods,
            has_more=has_more_history(earliest, periods),
        )
