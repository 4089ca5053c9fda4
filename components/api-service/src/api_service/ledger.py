"""Requester point accounting and the append-only episode log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from scoring.config import ScoringConfig
from scoring.errors import NotFoundError, PersistenceError, ValidationError
from scoring.normalizer import RaterNormalizer
from scoring.rating import composite_rating
from scoring.validation import (
    normalise_name,
    require_gmc,
    require_outcome,
    require_rating,
)
from sqlmodel import Session

from api_service.storage import (
    Episode,
    Rater,
    Requester,
    Storage,
    as_naive_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

NameResolver = Callable[[str], str | None]


@dataclass
class EpisodeResult:
    """Outcome of recording one vetting episode."""

    episode_id: int
    points_delta: int
    new_total: int
    requester_created: bool


@dataclass
class ProfileResult:
    """Outcome of a profile create/update."""

    gmc: str
    created: bool


@dataclass
class RequesterView:
    """Dashboard view of one requester, aggregated at query time."""

    profile: dict[str, Any]
    counts: dict[str, int]
    avg_quality: float | None
    avg_appropriateness: float | None
    requestor_score_rating: float
    recent_episodes: list[dict[str, Any]] = field(default_factory=list)


def _clean(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned if cleaned else None


def episode_summary(episode: Episode) -> dict[str, Any]:
    """Requester-facing fields of an episode (no rater identity)."""
    return {
        "id": episode.id,
        "created_at": episode.created_at.isoformat(),
        "scan_type": episode.scan_type,
        "outcome": episode.outcome,
        "points_change": episode.points_delta,
        "reason": episode.feedback,
        "discussed_with_senior": episode.discussed_with_senior,
        "request_quality": episode.raw_quality,
        "request_appropriateness": episode.raw_appropriateness,
        "norm_quality": episode.norm_quality,
        "norm_appropriateness": episode.norm_appropriateness,
        "requester_specialty_at_request": episode.requester_specialty_at_request,
        "requester_grade_at_request": episode.requester_grade_at_request,
        "requester_hospital_at_request": episode.requester_hospital_at_request,
    }


class ScoreLedger:
    """Records vetting episodes and maintains requester point totals.

    The running total on the requester row is updated in the same
    transaction as the episode insert, with the requester row locked, so
    the total and the sum of logged deltas (after clamping) never diverge.

    Args:
        storage: Persistent store.
        config: Outcome table and point bounds.
        name_resolver: Optional best-effort lookup of display names by id.
    """

    def __init__(
        self,
        storage: Storage,
        config: ScoringConfig | None = None,
        name_resolver: NameResolver | None = None,
    ) -> None:
        self._storage = storage
        self.config = config or ScoringConfig.from_env()
        self._name_resolver = name_resolver

    def _resolve_name(self, gmc: str) -> str | None:
        if self._name_resolver is None:
            return None
        try:
            return normalise_name(self._name_resolver(gmc))
        except Exception as exc:
            logger.warning("Name lookup failed for %s: %s", gmc, exc)
            return None

    def record_episode(
        self,
        *,
        requester_id: str,
        rater_id: str,
        outcome: str,
        raw_quality: object = None,
        raw_appropriateness: object = None,
        feedback: str | None = None,
        scan_type: str | None = None,
        discussed_with_senior: bool = False,
        name: str | None = None,
        hospital: str | None = None,
        specialty: str | None = None,
        grade: str | None = None,
        created_at: datetime | None = None,
    ) -> EpisodeResult:
        """Record a vetting decision and apply its point consequence.

        Args:
            requester_id: 7-digit id of the requesting clinician.
            rater_id: 7-digit id of the vetting radiologist.
            outcome: One of the configured outcome variants.
            raw_quality: Optional 1-10 clinical information rating.
            raw_appropriateness: Optional 1-10 indication rating.
            feedback: Free-text reason shown to the requester.
            scan_type: Requested scan type, checked against the config.
            discussed_with_senior: Whether the request was senior-approved.
            name: Requester display name (snapshot and first-time profile).
            hospital: Requester hospital (snapshot and first-time profile).
            specialty: Requester specialty (snapshot and first-time profile).
            grade: Requester grade (snapshot and first-time profile).
            created_at: Episode timestamp; defaults to now (UTC).

        Returns:
            Delta applied and the clamped new total.

        Raises:
            ValidationError: If any input is malformed. Nothing is written.
            PersistenceError: If the transaction fails. Nothing is written.
        """
        requester_id = require_gmc(requester_id, "requester GMC")
        rater_id = require_gmc(rater_id, "radiologist GMC")
        outcome = require_outcome(outcome, self.config.outcomes)
        quality = require_rating(raw_quality, "request_quality")
        appropriateness = require_rating(raw_appropriateness, "request_appropriateness")
        scan_type = _clean(scan_type)
        if scan_type is not None and scan_type not in self.config.scan_types:
            raise ValidationError("Invalid scan_type")

        name = normalise_name(name)
        hospital, specialty, grade = _clean(hospital), _clean(specialty), _clean(grade)

        # Network lookups stay outside the transaction.
        requester_name = name
        if requester_name is None and self._storage.get_requester(requester_id) is None:
            requester_name = self._resolve_name(requester_id)
        rater_name = None
        if self._storage.get_rater(rater_id) is None:
            rater_name = self._resolve_name(rater_id)

        delta = self.config.delta_for(outcome)
        with self._storage.transaction() as session:
            requester, created = self._lock_or_create_requester(
                session,
                requester_id,
                name=requester_name,
                hospital=hospital,
                specialty=specialty,
                grade=grade,
            )
            if session.get(Rater, rater_id) is None and self._storage.insert_if_absent(
                session, Rater(gmc=rater_id, name=rater_name)
            ):
                logger.info("Created rater %s", rater_id)

            normalizer = RaterNormalizer(
                lambda rater, dimension: self._storage.rater_ratings(
                    session, rater, dimension
                )
            )
            episode = Episode(
                requester_gmc=requester_id,
                rater_gmc=rater_id,
                created_at=as_naive_utc(created_at) if created_at else utcnow(),
                scan_type=scan_type,
                discussed_with_senior=bool(discussed_with_senior),
                outcome=outcome,
                points_delta=delta,
                raw_quality=quality,
                raw_appropriateness=appropriateness,
                norm_quality=normalizer.normalize(rater_id, "quality", quality),
                norm_appropriateness=normalizer.normalize(
                    rater_id, "appropriateness", appropriateness
                ),
                feedback=_clean(feedback),
                requester_name_at_request=name or requester.name,
                requester_hospital_at_request=hospital or requester.hospital,
                requester_specialty_at_request=specialty or requester.specialty,
                requester_grade_at_request=grade or requester.grade,
                requester_points_at_request=requester.points,
            )
            new_total = self.config.clamp_points(requester.points + delta)
            requester.points = new_total
            session.add(requester)
            session.add(episode)
            session.flush()
            episode_id = int(episode.id or 0)

        logger.info(
            "Recorded episode %s requester=%s outcome=%s delta=%d total=%d",
            episode_id,
            requester_id,
            outcome,
            delta,
            new_total,
        )
        return EpisodeResult(
            episode_id=episode_id,
            points_delta=delta,
            new_total=new_total,
            requester_created=created,
        )

    def _lock_or_create_requester(
        self,
        session: Session,
        gmc: str,
        *,
        name: str | None,
        hospital: str | None,
        specialty: str | None,
        grade: str | None,
    ) -> tuple[Requester, bool]:
        """Return the locked requester row and whether this call created it.

        A concurrent first request for the same id loses the insert race
        quietly and re-reads the winner's row.
        """
        requester = self._storage.lock_requester(session, gmc)
        if requester is not None:
            return requester, False

        points = self.config.clamp_points(self.config.starting_points)
        created = self._storage.insert_if_absent(
            session,
            Requester(
                gmc=gmc,
                name=name,
                hospital=hospital,
                specialty=specialty,
                grade=grade,
                points=points,
            ),
        )
        if created:
            logger.info("Created requester %s with %d points", gmc, points)
        requester = self._storage.lock_requester(session, gmc)
        if requester is None:
            raise PersistenceError("Save failed")
        return requester, created

    def update_profile(
        self,
        requester_id: str,
        *,
        name: str | None = None,
        hospital: str | None = None,
        specialty: str | None = None,
        grade: str | None = None,
    ) -> ProfileResult:
        """Create a requester or update the profile fields that are given.

        Points and past episode snapshots are never touched.
        """
        requester_id = require_gmc(requester_id)
        name = normalise_name(name)
        hospital, specialty, grade = _clean(hospital), _clean(specialty), _clean(grade)

        if name is None and self._storage.get_requester(requester_id) is None:
            name = self._resolve_name(requester_id)

        with self._storage.transaction() as session:
            requester, created = self._lock_or_create_requester(
                session,
                requester_id,
                name=name,
                hospital=hospital,
                specialty=specialty,
                grade=grade,
            )
            if created:
                return ProfileResult(gmc=requester_id, created=True)

            updates = {
                "name": name,
                "hospital": hospital,
                "specialty": specialty,
                "grade": grade,
            }
            for key, value in updates.items():
                if value is not None:
                    setattr(requester, key, value)
            session.add(requester)
        logger.info("Updated profile for requester %s", requester_id)
        return ProfileResult(gmc=requester_id, created=False)

    def get_requester_view(self, requester_id: str) -> RequesterView:
        """Profile, outcome counts, rating averages and recent episodes.

        Raises:
            ValidationError: If the id is malformed.
            NotFoundError: If the requester is unknown.
        """
        requester_id = require_gmc(requester_id)
        requester = self._storage.get_requester(requester_id)
        if requester is None:
            raise NotFoundError("User not recognised")

        counts = {outcome: 0 for outcome in self.config.outcomes}
        for outcome, count in self._storage.outcome_counts(requester_id).items():
            counts[outcome] = counts.get(outcome, 0) + count
        avg_quality, avg_appropriateness = self._storage.rating_averages(requester_id)
        points = self.config.clamp_points(requester.points)

        return RequesterView(
            profile={
                "gmc": requester.gmc,
                "name": requester.name,
                "hospital": requester.hospital,
                "specialty": requester.specialty,
                "grade": requester.grade,
                "score": points,
            },
            counts=counts,
            avg_quality=avg_quality,
            avg_appropriateness=avg_appropriateness,
            requestor_score_rating=composite_rating(
                avg_quality, avg_appropriateness, points
            ),
            recent_episodes=[
                episode_summary(episode)
                for episode in self._storage.recent_episodes(
                    requester_id, self.config.recent_limit
                )
            ],
        )
