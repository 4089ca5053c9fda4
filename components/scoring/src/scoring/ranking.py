"""Leaderboard ranking, percentile and "around me" windowing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from scoring.errors import ValidationError
from scoring.rating import composite_rating

METRICS: tuple[str, ...] = (
    "score",
    "pct_accepted",
    "pct_rejected",
    "pct_delayed",
    "avg_quality",
    "avg_appropriateness",
)
# Names used by the leaderboard tables.
METRIC_ALIASES = {"quality": "avg_quality", "appropriateness": "avg_appropriateness"}

DEFAULT_LIMIT = 10
DEFAULT_HALF_SPAN = 3


@dataclass
class RequesterStats:
    """Per-requester aggregates over the episode log.

    Attributes:
        gmc: Requester registration number.
        name: Current display name, if known.
        hospital: Current hospital, if known.
        specialty: Current specialty, if known.
        grade: Current grade, if known.
        points: Running points total (already clamped by the ledger).
        total: Number of episodes on record.
        accepted: Accepted episode count.
        delayed: Delayed episode count.
        rejected: Rejected episode count.
        info_needed: Episodes returned for more information.
        avg_quality: Mean quality rating (normalised, raw fallback).
        avg_appropriateness: Mean appropriateness rating.
    """

    gmc: str
    name: str | None = None
    hospital: str | None = None
    specialty: str | None = None
    grade: str | None = None
    points: int = 0
    total: int = 0
    accepted: int = 0
    delayed: int = 0
    rejected: int = 0
    info_needed: int = 0
    avg_quality: float | None = None
    avg_appropriateness: float | None = None

    def _pct(self, count: int) -> float:
        return (count / self.total) * 100 if self.total else 0.0

    @property
    def pct_accepted(self) -> float:
        return self._pct(self.accepted)

    @property
    def pct_rejected(self) -> float:
        return self._pct(self.rejected)

    @property
    def pct_delayed(self) -> float:
        return self._pct(self.delayed)

    @property
    def pct_info_needed(self) -> float:
        return self._pct(self.info_needed)

    @property
    def requestor_score_rating(self) -> float:
        return composite_rating(self.avg_quality, self.avg_appropriateness, self.points)

    def metric_value(self, metric: str) -> float:
        """Return the sort key for a canonical metric name (None sorts as 0)."""
        if metric == "score":
            return self.requestor_score_rating
        value = getattr(self, metric)
        return float(value) if value is not None else 0.0


@dataclass
class RankedRequester:
    """A requester with their 1-based position in a ranking."""

    rank: int
    stats: RequesterStats

    def to_dict(self) -> dict[str, Any]:
        stats = self.stats
        return {
            "rank": self.rank,
            "gmc": stats.gmc,
            "name": stats.name,
            "hospital": stats.hospital,
            "specialty": stats.specialty,
            "grade": stats.grade,
            "score": stats.points,
            "total": stats.total,
            "pct_accepted": stats.pct_accepted,
            "pct_rejected": stats.pct_rejected,
            "pct_delayed": stats.pct_delayed,
            "pct_info_needed": stats.pct_info_needed,
            "avg_quality": stats.avg_quality,
            "avg_appropriateness": stats.avg_appropriateness,
            "requestor_score_rating": stats.requestor_score_rating,
        }


@dataclass(frozen=True)
class RankingGap:
    """Marker between the top rows and the window around the target."""

    def to_dict(self) -> dict[str, Any]:
        return {"ellipsis": True}


GAP = RankingGap()


@dataclass
class RankingWindow:
    """Slice of a ranking returned to the leaderboard.

    Attributes:
        total: Size of the ranked population.
        rank_index: 0-based position of the target, -1 when absent.
        percentile: Target percentile, None when absent or population empty.
        rows: Ranked rows, possibly with a single ``GAP`` marker.
    """

    total: int
    rank_index: int
    percentile: int | None
    rows: list[RankedRequester | RankingGap] = field(default_factory=list)


def resolve_metric(metric: str) -> str:
    """Return the canonical metric name or raise ValidationError."""
    canonical = METRIC_ALIASES.get(metric, metric)
    if canonical not in METRICS:
        raise ValidationError("Invalid metric")
    return canonical


def rank_requesters(
    population: Iterable[RequesterStats], metric: str
) -> list[RankedRequester]:
    """Sort a population by metric, highest first, and assign ranks.

    Ties keep the population's iteration order, so repeated queries over
    the same data always produce the same ranking.
    """
    canonical = resolve_metric(metric)
    ordered = sorted(
        population, key=lambda stats: stats.metric_value(canonical), reverse=True
    )
    return [
        RankedRequester(rank=position, stats=stats)
        for position, stats in enumerate(ordered, start=1)
    ]


def percentile(rank_index: int, total: int) -> int | None:
    """Percentile of a 0-based position: ``round((total - idx) / total * 100)``."""
    if rank_index < 0 or total <= 0:
        return None
    return round(((total - rank_index) / total) * 100)


def window_around(
    ranked: Sequence[RankedRequester],
    target_id: str | None,
    limit: int = DEFAULT_LIMIT,
    half_span: int = DEFAULT_HALF_SPAN,
) -> RankingWindow:
    """Return the top ``limit`` rows plus a window around ``target_id``.

    When the target sits outside the top rows, the result is the top rows,
    a ``GAP`` marker, then up to ``half_span`` rows either side of the
    target. Window rows that would repeat top rows are dropped, and the
    marker only appears when at least one row is skipped.
    """
    total = len(ranked)
    limit = max(0, limit)
    half_span = max(0, half_span)

    rank_index = -1
    if target_id is not None:
        rank_index = next(
            (idx for idx, row in enumerate(ranked) if row.stats.gmc == target_id),
            -1,
        )

    rows: list[RankedRequester | RankingGap] = list(ranked[:limit])
    if rank_index >= limit:
        start = max(limit, rank_index - half_span)
        end = min(total, rank_index + half_span + 1)
        if start > limit:
            rows.append(GAP)
        rows.extend(ranked[start:end])

    return RankingWindow(
        total=total,
        rank_index=rank_index,
        percentile=percentile(rank_index, total),
        rows=rows,
    )
