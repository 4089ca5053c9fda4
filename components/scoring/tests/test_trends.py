from datetime import datetime

import pytest

from scoring.errors import ValidationError
from scoring.trends import (
    RatingSample,
    bucket_samples,
    build_grid,
    has_more_history,
    period_key,
    period_start,
    validate_trend_query,
)

NOW = datetime(2024, 1, 5, 15, 30)


class TestBuildGrid:
    def test_daily_grid_ends_today(self) -> None:
        grid = build_grid(NOW, "day", limit=5, page=0)
        assert [p.key for p in grid] == [
            "2024-01-01",
            "2024-01-02",
            "2024-01-03",
            "2024-01-04",
            "2024-01-05",
        ]

    def test_second_page_is_older(self) -> None:
        grid = build_grid(NOW, "day", limit=5, page=1)
        assert grid[0].key == "2023-12-27"
        assert grid[-1].key == "2023-12-31"

    def test_monthly_grid_crosses_year(self) -> None:
        grid = build_grid(NOW, "month", limit=3, page=0)
        assert [p.key for p in grid] == ["2023-11", "2023-12", "2024-01"]

    def test_weekly_grid_uses_iso_weeks(self) -> None:
        grid = build_grid(datetime(2025, 1, 2), "week", limit=2, page=0)
        assert [p.key for p in grid] == ["2024-W52", "2025-W01"]
        assert grid[-1].start == datetime(2024, 12, 30)


def test_period_start_week_is_monday() -> None:
    assert period_start(datetime(2024, 1, 7, 23, 0), "week") == datetime(2024, 1, 1)


def test_period_key_year_boundary() -> None:
    assert period_key(datetime(2024, 12, 30), "week") == "2025-W01"
    assert period_key(datetime(2021, 1, 3), "week") == "2020-W53"


class TestBucketSamples:
    def test_counts_and_left_join(self) -> None:
        samples = [
            RatingSample(datetime(2024, 1, 1, 2, 0), 6.0, 4.0),
            RatingSample(datetime(2024, 1, 1, 22, 0), 8.0, None),
            RatingSample(datetime(2024, 1, 3, 1, 0), None, None),
        ]

        grid = bucket_samples(build_grid(NOW, "day", 5, 0), samples, "day")

        assert [p.count for p in grid] == [2, 0, 1, 0, 0]
        assert grid[0].avg_quality == pytest.approx(7.0)
        assert grid[0].avg_appropriateness == pytest.approx(4.0)
        assert grid[1].avg_quality is None
        assert grid[2].avg_quality is None

    def test_samples_outside_grid_ignored(self) -> None:
        samples = [RatingSample(datetime(2023, 6, 1), 5.0, 5.0)]
        grid = bucket_samples(build_grid(NOW, "day", 5, 0), samples, "day")
        assert sum(p.count for p in grid) == 0


class TestHasMoreHistory:
    def test_older_episode_means_more(self) -> None:
        grid = build_grid(NOW, "day", 5, 0)
        assert has_more_history(datetime(2023, 12, 31, 23, 59), grid)

    def test_episode_inside_page(self) -> None:
        grid = build_grid(NOW, "day", 5, 0)
        assert not has_more_history(datetime(2024, 1, 1), grid)

    def test_no_episodes(self) -> None:
        assert not has_more_history(None, build_grid(NOW, "day", 5, 0))


class TestValidateTrendQuery:
    @pytest.mark.parametrize(
        ("interval", "mode", "limit", "page"),
        [
            ("year", "raw", 5, 0),
            ("day", "zscore", 5, 0),
            ("day", "raw", 0, 0),
            ("day", "raw", 5, -1),
        ],
    )
    def test_rejects(self, interval: str, mode: str, limit: int, page: int) -> None:
        with pytest.raises(ValidationError):
            validate_trend_query(interval, mode, limit, page)

    def test_accepts(self) -> None:
        validate_trend_query("week", "norm", 12, 3)
