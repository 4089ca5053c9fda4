import pytest

from scoring.errors import ValidationError
from scoring.validation import (
    is_valid_gmc,
    normalise_name,
    require_gmc,
    require_outcome,
    require_rating,
)


class TestGmc:
    @pytest.mark.parametrize("value", ["1234567", " 7654321 ", 1234567])
    def test_valid(self, value: object) -> None:
        assert is_valid_gmc(value)

    @pytest.mark.parametrize("value", ["123456", "12345678", "12a4567", "", None])
    def test_invalid(self, value: object) -> None:
        assert not is_valid_gmc(value)

    def test_require_strips(self) -> None:
        assert require_gmc(" 1234567 ") == "1234567"

    def test_require_raises(self) -> None:
        with pytest.raises(ValidationError, match="Invalid requester GMC"):
            require_gmc("abc", "requester GMC")


class TestOutcome:
    def test_recognised(self) -> None:
        assert require_outcome("accepted", ["accepted", "rejected"]) == "accepted"

    def test_unrecognised(self) -> None:
        with pytest.raises(ValidationError):
            require_outcome("override", ["accepted", "rejected"])


class TestRating:
    def test_absent(self) -> None:
        assert require_rating(None, "quality") is None
        assert require_rating("", "quality") is None

    def test_numeric_string(self) -> None:
        assert require_rating("7", "quality") == 7

    def test_integral_float(self) -> None:
        assert require_rating(8.0, "quality") == 8

    @pytest.mark.parametrize("value", [0, 11, -1, 7.5, "x", True])
    def test_out_of_range_or_malformed(self, value: object) -> None:
        with pytest.raises(ValidationError):
            require_rating(value, "quality")


def test_normalise_name() -> None:
    assert normalise_name("  Jane   Q  Doe ") == "Jane Q Doe"
    assert normalise_name("   ") is None
    assert normalise_name(None) is None
