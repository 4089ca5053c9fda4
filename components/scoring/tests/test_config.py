"""Tests for ScoringConfig."""

import pytest

from scoring.config import SCORING_TABLES, ScoringConfig, table_for_version


def test_current_table_deltas() -> None:
    cfg = table_for_version("v2")
    assert [cfg.delta_for(o) for o in cfg.outcomes] == [1, -5, -10, -5]
    assert cfg.starting_points == 500
    assert cfg.points_ceiling == 1000


def test_legacy_table_has_no_info_needed() -> None:
    cfg = table_for_version("v1")
    assert "info_needed" not in cfg.outcomes
    assert cfg.delta_for("accepted") == 5
    assert cfg.points_ceiling is None


def test_unknown_version_falls_back_to_default() -> None:
    assert table_for_version("v99") is SCORING_TABLES["v2"]


def test_clamp_points_respects_bounds() -> None:
    cfg = table_for_version("v2")
    assert cfg.clamp_points(-40) == 0
    assert cfg.clamp_points(1005) == 1000
    assert cfg.clamp_points(486) == 486


def test_clamp_points_unbounded_ceiling() -> None:
    assert table_for_version("v1").clamp_points(1500) == 1500


class TestFromEnv:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SCORING_TABLE_VERSION", raising=False)
        monkeypatch.delenv("STARTING_POINTS", raising=False)
        cfg = ScoringConfig.from_env()
        assert cfg.table_version == "v2"
        assert cfg.starting_points == 500

    def test_selects_legacy_version(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SCORING_TABLE_VERSION", "V1")
        monkeypatch.delenv("STARTING_POINTS", raising=False)
        assert ScoringConfig.from_env().table_version == "v1"

    def test_starting_points_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SCORING_TABLE_VERSION", raising=False)
        monkeypatch.setenv("STARTING_POINTS", "1000")
        assert ScoringConfig.from_env().starting_points == 1000

    def test_malformed_starting_points_ignored(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("SCORING_TABLE_VERSION", raising=False)
        monkeypatch.setenv("STARTING_POINTS", "lots")
        assert ScoringConfig.from_env().starting_points == 500
