import pytest

from scoring.normalizer import RaterNormalizer, normalize_rating


class TestNormalizeRating:
    def test_absent_raw_stays_absent(self) -> None:
        assert normalize_rating(None, [3, 4, 5]) is None

    @pytest.mark.parametrize("prior", [[], [8]])
    def test_too_few_priors_returns_raw(self, prior: list[int]) -> None:
        assert normalize_rating(7, prior) == 7.0

    def test_identical_priors_return_midpoint(self) -> None:
        assert normalize_rating(10, [6, 6]) == 5.0
        assert normalize_rating(1, [9, 9, 9, 9]) == 5.0

    def test_rater_mean_maps_to_midpoint(self) -> None:
        assert normalize_rating(8, [6, 8, 10]) == 5.0

    def test_z_score_in_raw_units(self) -> None:
        # mean 5, population stdev 2
        assert normalize_rating(7, [3, 7]) == pytest.approx(6.0)
        assert normalize_rating(3, [3, 7]) == pytest.approx(4.0)

    def test_clamped_to_rating_scale(self) -> None:
        # mean 5.5, population stdev 0.5: z = 9 for a raw 10
        assert normalize_rating(10, [5, 6]) == 10.0
        assert normalize_rating(1, [5, 6]) == 1.0

    def test_strict_and_lenient_raters_become_comparable(self) -> None:
        strict = normalize_rating(7, [4, 5, 6])
        lenient = normalize_rating(10, [7, 8, 9])
        assert strict == pytest.approx(lenient)


class TestRaterNormalizer:
    def test_uses_history_for_rater_and_dimension(self) -> None:
        calls: list[tuple[str, str]] = []

        def _history(rater_id: str, dimension: str) -> list[int]:
            calls.append((rater_id, dimension))
            return [2, 2, 2]

        normalizer = RaterNormalizer(_history)
        assert normalizer.normalize("1111111", "quality", 9) == 5.0
        assert calls == [("1111111", "quality")]

    def test_missing_raw_skips_history_lookup(self) -> None:
        def _history(rater_id: str, dimension: str) -> list[int]:
            raise AssertionError("history should not be read")

        assert RaterNormalizer(_history).normalize("1111111", "quality", None) is None
