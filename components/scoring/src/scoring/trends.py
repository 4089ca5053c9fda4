"""Calendar period grid and bucketing for rating trends.

The grid is generated from "now" independently of the data, then episodes
are left-joined onto it: periods without episodes report a count of 0 and
null averages. Weeks follow ISO-8601 (Monday start, ``%G-W%V`` keys), which
keeps late-December days in week 1 of the following ISO year.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Literal, NamedTuple

from scoring.errors import ValidationError
from scoring.rating import mean_or_none

Interval = Literal["day", "week", "month"]
Mode = Literal["raw", "norm"]
INTERVALS: tuple[str, ...] = ("day", "week", "month")
MODES: tuple[str, ...] = ("raw", "norm")

DEFAULT_TREND_LIMIT = 12
MAX_TREND_LIMIT = 366


class RatingSample(NamedTuple):
    """One episode's timestamp and the rating pair selected by the mode."""

    created_at: datetime
    quality: float | None
    appropriateness: float | None


@dataclass
class TrendPeriod:
    """Aggregates for one calendar bucket. ``end`` is exclusive."""

    key: str
    start: datetime
    end: datetime
    count: int = 0
    avg_quality: float | None = None
    avg_appropriateness: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "period": self.key,
            "start": self.start.isoformat(),
            "count": self.count,
            "avg_quality": self.avg_quality,
            "avg_appropriateness": self.avg_appropriateness,
        }


@dataclass
class TrendPage:
    """A page of periods, oldest first, and whether older history exists."""

    interval: str
    mode: str
    page: int
    limit: int
    periods: list[TrendPeriod] = field(default_factory=list)
    has_more: bool = False


def validate_trend_query(interval: str, mode: str, limit: int, page: int) -> None:
    """Raise ValidationError for an unusable trend query."""
    if interval not in INTERVALS:
        raise ValidationError("Invalid interval")
    if mode not in MODES:
        raise ValidationError("Invalid mode")
    if limit < 1 or limit > MAX_TREND_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_TREND_LIMIT}")
    if page < 0:
        raise ValidationError("page must be >= 0")


def period_start(moment: datetime, interval: Interval) -> datetime:
    """Truncate a timestamp to the start of its period."""
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if interval == "day":
        return day
    if interval == "week":
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def previous_period_start(start: datetime, interval: Interval) -> datetime:
    """Start of the period immediately before the one starting at ``start``."""
    if interval == "day":
        return start - timedelta(days=1)
    if interval == "week":
        return start - timedelta(weeks=1)
    if start.month == 1:
        return start.replace(year=start.year - 1, month=12)
    return start.replace(month=start.month - 1)


def next_period_start(start: datetime, interval: Interval) -> datetime:
    if interval == "day":
        return start + timedelta(days=1)
    if interval == "week":
        return start + timedelta(weeks=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def period_key(moment: datetime, interval: Interval) -> str:
    """Label for the period containing ``moment``.

    Examples:
        >>> period_key(datetime(2024, 12, 30), "week")
        '2025-W01'
        >>> period_key(datetime(2024, 3, 9), "month")
        '2024-03'
    """
    if interval == "day":
        return moment.strftime("%Y-%m-%d")
    if interval == "week":
        iso_year, iso_week, _ = moment.isocalendar()
        return f"{iso_year:04d}-W{iso_week:02d}"
    return moment.strftime("%Y-%m")


def build_grid(
    now: datetime, interval: Interval, limit: int, page: int
) -> list[TrendPeriod]:
    """Generate the periods for one page, oldest first.

    Walks back ``limit * (page + 1)`` periods from the one containing
    ``now`` and keeps the ``limit`` periods at the page offset, page 0
    being the most recent.
    """
    starts: list[datetime] = []
    cursor = period_start(now, interval)
    for _ in range(limit * (page + 1)):
        starts.append(cursor)
        cursor = previous_period_start(cursor, interval)

    page_starts = starts[page * limit : (page + 1) * limit]
    page_starts.reverse()
    return [
        TrendPeriod(
            key=period_key(start, interval),
            start=start,
            end=next_period_start(start, interval),
        )
        for start in page_starts
    ]


def bucket_samples(
    grid: list[TrendPeriod], samples: Iterable[RatingSample], interval: Interval
) -> list[TrendPeriod]:
    """Fill counts and averages on ``grid`` from the samples that fall in it."""
    by_key = {period.key: period for period in grid}
    quality: dict[str, list[float | None]] = {key: [] for key in by_key}
    appropriateness: dict[str, list[float | None]] = {key: [] for key in by_key}

    for sample in samples:
        key = period_key(sample.created_at, interval)
        period = by_key.get(key)
        if period is None:
            continue
        period.count += 1
        quality[key].append(sample.quality)
        appropriateness[key].append(sample.appropriateness)

    for key, period in by_key.items():
        period.avg_quality = mean_or_none(quality[key])
        period.avg_appropriateness = mean_or_none(appropriateness[key])
    return grid


def has_more_history(earliest: datetime | None, grid: list[TrendPeriod]) -> bool:
    """True when the oldest episode predates the oldest period on the page."""
    if earliest is None or not grid:
        return False
    return earliest < grid[0].start
