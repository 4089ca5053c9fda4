"""Versioned scoring configuration.

The outcome set and its point consequences changed between releases of the
vetting tool, so they live in a named table rather than in the ledger.

Environment variables:
- SCORING_TABLE_VERSION: "v1" (legacy) or "v2" (current, default).
- STARTING_POINTS: Override for the points a new requester starts with.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

DEFAULT_TABLE_VERSION = "v2"
RECENT_EPISODE_LIMIT = 25
RATING_MIN = 1
RATING_MAX = 10

DEFAULT_SCAN_TYPES: tuple[str, ...] = (
    "CT Head",
    "CT Cervical Spine",
    "CT Chest",
    "CT Abdomen/Pelvis",
    "CT Chest/Abdomen/Pelvis",
    "CT Pulmonary Angiogram",
    "CT Angiogram",
    "CT KUB",
    "CT Trauma",
    "Other",
)


@dataclass(frozen=True)
class ScoringConfig:
    """Outcome table and point bounds for a scoring generation.

    Attributes:
        table_version: Name of the table generation.
        outcomes: Recognised outcome variants, in display order.
        deltas: Point consequence for each outcome.
        starting_points: Points assigned to a newly created requester.
        points_floor: Lower bound applied on every write.
        points_ceiling: Upper bound applied on every write (None = unbounded).
        recent_limit: Number of episodes returned in a requester view.
        scan_types: Scan types a radiologist may pick from.
    """

    table_version: str
    outcomes: tuple[str, ...]
    deltas: Mapping[str, int]
    starting_points: int
    points_floor: int = 0
    points_ceiling: int | None = 1000
    recent_limit: int = RECENT_EPISODE_LIMIT
    scan_types: tuple[str, ...] = field(default=DEFAULT_SCAN_TYPES)

    def delta_for(self, outcome: str) -> int:
        """Return the point delta for a recognised outcome."""
        return self.deltas[outcome]

    def clamp_points(self, points: int) -> int:
        """Clamp a running total into the configured bounds."""
        value = max(self.points_floor, points)
        if self.points_ceiling is not None:
            value = min(self.points_ceiling, value)
        return value

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """Create ScoringConfig from environment variables."""
        version = (os.getenv("SCORING_TABLE_VERSION") or DEFAULT_TABLE_VERSION).strip()
        config = table_for_version(version.lower())

        raw_start = os.getenv("STARTING_POINTS")
        if raw_start:
            try:
                start = int(raw_start)
            except ValueError:
                start = config.starting_points
            if start >= 0:
                config = replace(config, starting_points=start)
        return config


SCORING_TABLES: dict[str, ScoringConfig] = {
    "v1": ScoringConfig(
        table_version="v1",
        outcomes=("accepted", "delayed", "rejected"),
        deltas=MappingProxyType({"accepted": 5, "delayed": -5, "rejected": -10}),
        starting_points=1000,
        points_ceiling=None,
    ),
    "v2": ScoringConfig(
        table_version="v2",
        outcomes=("accepted", "delayed", "rejected", "info_needed"),
        deltas=MappingProxyType(
            {"accepted": 1, "delayed": -5, "rejected": -10, "info_needed": -5}
        ),
        starting_points=500,
        points_ceiling=1000,
    ),
}


def table_for_version(version: str) -> ScoringConfig:
    """Return the scoring table for a version, falling back to the default."""
    return SCORING_TABLES.get(version, SCORING_TABLES[DEFAULT_TABLE_VERSION])
