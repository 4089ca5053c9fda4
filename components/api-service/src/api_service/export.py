"""Audit CSV export of the episode log."""

from __future__ import annotations

import csv
import io
from datetime import date
from typing import Iterable

from scoring.errors import ValidationError

from api_service.storage import Episode, Storage

EXPORT_COLUMNS = [
    "id",
    "created_at",
    "requester_gmc",
    "radiologist_gmc",
    "requester_score_at_request",
    "requester_specialty_at_request",
    "requester_grade_at_request",
    "requester_hospital_at_request",
    "requester_name_at_request",
    "scan_type",
    "outcome",
    "points_change",
    "request_quality",
    "request_appropriateness",
    "norm_quality",
    "norm_appropriateness",
    "reason",
    "discussed_with_senior",
]


def parse_export_date(value: str | None, label: str) -> date | None:
    """Parse an optional YYYY-MM-DD bound."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {label} date") from None


def _row(episode: Episode) -> list[object]:
    return [
        episode.id,
        episode.created_at.isoformat(sep=" ", timespec="seconds"),
        episode.requester_gmc,
        episode.rater_gmc,
        episode.requester_points_at_request,
        episode.requester_specialty_at_request or "",
        episode.requester_grade_at_request or "",
        episode.requester_hospital_at_request or "",
        episode.requester_name_at_request or "",
        episode.scan_type or "",
        episode.outcome,
        episode.points_delta,
        "" if episode.raw_quality is None else episode.raw_quality,
        "" if episode.raw_appropriateness is None else episode.raw_appropriateness,
        "" if episode.norm_quality is None else round(episode.norm_quality, 3),
        ""
        if episode.norm_appropriateness is None
        else round(episode.norm_appropriateness, 3),
        episode.feedback or "",
        int(episode.discussed_with_senior),
    ]


def episodes_to_csv(episodes: Iterable[Episode]) -> str:
    """Render episodes as CSV text with a header row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for episode in episodes:
        writer.writerow(_row(episode))
    return buffer.getvalue()


def export_episodes_csv(
    storage: Storage, *, date_from: str | None = None, date_to: str | None = None
) -> str:
    """Export episodes (newest first) within an inclusive date range.

    Raises:
        ValidationError: If a bound is malformed or the range is reversed.
    """
    start = parse_export_date(date_from, "from")
    end = parse_export_date(date_to, "to")
    if start is not None and end is not None and start > end:
        raise ValidationError("from must not be after to")
    return episodes_to_csv(storage.list_episodes(date_from=start, date_to=end))
