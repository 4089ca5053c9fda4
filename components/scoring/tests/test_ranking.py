import re
from dataclasses import fields

import pytest

from scoring.errors import ValidationError
from scoring.ranking import (
    GAP,
    RankedRequester,
    RequesterStats,
    percentile,
    rank_requesters,
    resolve_metric,
    window_around,
)


def _population(size: int) -> list[RankedRequester]:
    stats = [
        RequesterStats(gmc=f"{1000000 + idx}", points=1000 - idx) for idx in range(size)
    ]
    return rank_requesters(stats, "score")


class TestRankRequesters:
    def test_score_orders_by_composite_rating(self) -> None:
        population = [
            RequesterStats(gmc="1000001", points=486),
            RequesterStats(gmc="1000002", points=700),
            RequesterStats(gmc="1000003", points=200),
        ]

        ranked = rank_requesters(population, "score")

        assert [row.stats.points for row in ranked] == [700, 486, 200]
        assert [row.rank for row in ranked] == [1, 2, 3]

    def test_ties_keep_population_order(self) -> None:
        population = [
            RequesterStats(gmc="1000001", points=300),
            RequesterStats(gmc="1000002", points=300),
            RequesterStats(gmc="1000003", points=300),
        ]

        first = rank_requesters(population, "score")
        second = rank_requesters(population, "score")

        assert [r.stats.gmc for r in first] == ["1000001", "1000002", "1000003"]
        assert [r.stats.gmc for r in first] == [r.stats.gmc for r in second]

    def test_percentage_metric(self) -> None:
        population = [
            RequesterStats(gmc="1000001", total=4, rejected=1),
            RequesterStats(gmc="1000002", total=2, rejected=2),
            RequesterStats(gmc="1000003", total=0),
        ]

        ranked = rank_requesters(population, "pct_rejected")

        assert [r.stats.gmc for r in ranked] == ["1000002", "1000001", "1000003"]
        assert ranked[0].stats.pct_rejected == 100.0
        assert ranked[2].stats.pct_rejected == 0.0

    def test_output_is_non_increasing(self) -> None:
        population = [
            RequesterStats(gmc=f"{2000000 + i}", avg_quality=q)
            for i, q in enumerate([3.5, None, 9.1, 5.0, 5.0, 7.2])
        ]

        ranked = rank_requesters(population, "avg_quality")
        values = [r.stats.metric_value("avg_quality") for r in ranked]

        assert values == sorted(values, reverse=True)

    def test_unknown_metric_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid metric"):
            rank_requesters([], "popularity")

    def test_aliases(self) -> None:
        assert resolve_metric("quality") == "avg_quality"
        assert resolve_metric("appropriateness") == "avg_appropriateness"


class TestWindowAround:
    def test_target_in_top_rows_has_no_gap(self) -> None:
        ranked = _population(60)

        window = window_around(ranked, ranked[2].stats.gmc, limit=10, half_span=2)

        assert GAP not in window.rows
        assert len(window.rows) == 10
        assert window.rank_index == 2

    def test_target_far_down_gets_gap_and_window(self) -> None:
        ranked = _population(60)

        window = window_around(ranked, ranked[49].stats.gmc, limit=10, half_span=2)

        assert len(window.rows) == 10 + 1 + 5
        assert window.rows[10] is GAP
        tail = [row.rank for row in window.rows[11:]]  # type: ignore[union-attr]
        assert tail == [48, 49, 50, 51, 52]

    def test_window_clipped_at_end(self) -> None:
        ranked = _population(50)

        window = window_around(ranked, ranked[49].stats.gmc, limit=10, half_span=2)

        assert len(window.rows) == 10 + 1 + 3
        assert window.percentile == 2

    def test_window_adjacent_to_top_rows_has_no_gap_or_duplicates(self) -> None:
        ranked = _population(30)

        window = window_around(ranked, ranked[11].stats.gmc, limit=10, half_span=3)

        ranks = [row.rank for row in window.rows]  # type: ignore[union-attr]
        assert ranks == list(range(1, 16))

    def test_unknown_target_returns_top_rows(self) -> None:
        ranked = _population(30)

        window = window_around(ranked, "9999999", limit=10, half_span=2)

        assert len(window.rows) == 10
        assert window.rank_index == -1
        assert window.percentile is None

    def test_no_target(self) -> None:
        window = window_around(_population(3), None, limit=10)
        assert len(window.rows) == 3
        assert window.percentile is None


class TestPercentile:
    def test_top_of_population(self) -> None:
        assert percentile(0, 4) == 100

    def test_bottom_of_population(self) -> None:
        assert percentile(3, 4) == 25

    def test_undefined(self) -> None:
        assert percentile(-1, 4) is None
        assert percentile(0, 0) is None


def test_ranked_row_serialises_rating() -> None:
    row = rank_requesters([RequesterStats(gmc="1000001", points=700)], "score")[0]
    data = row.to_dict()
    assert data["rank"] == 1
    assert data["requestor_score_rating"] == pytest.approx(7.0)
    assert GAP.to_dict() == {"ellipsis": True}


def test_stats_docstring_lists_every_field() -> None:
    doc = RequesterStats.__doc__ or ""

    assert "Attributes:" in doc
    assert "Args:" not in doc
    for stat_field in fields(RequesterStats):
        assert re.search(rf"^\s+{stat_field.name}: ", doc, re.MULTILINE)
