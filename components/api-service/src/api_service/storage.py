"""Storage layer for the vetting service."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from scoring.errors import PersistenceError
from scoring.normalizer import Dimension
from scoring.ranking import RequesterStats
from scoring.trends import RatingSample
from sqlalchemy import Column, DateTime, case, event, func, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored timestamp is UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware timestamp to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Requester(SQLModel, table=True):
    """Clinician who submits out-of-hours scan requests."""

    gmc: str = Field(primary_key=True, max_length=7)
    name: str | None = None
    hospital: str | None = Field(default=None, index=True)
    specialty: str | None = Field(default=None, index=True)
    grade: str | None = None
    points: int
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=False), nullable=False),
    )


class Rater(SQLModel, table=True):
    """Radiologist who vets requests."""

    gmc: str = Field(primary_key=True, max_length=7)
    name: str | None = None
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=False), nullable=False),
    )


class Episode(SQLModel, table=True):
    """Immutable vetting record with the requester snapshot at submission."""

    id: int | None = Field(default=None, primary_key=True)
    requester_gmc: str = Field(foreign_key="requester.gmc", index=True)
    # Not a foreign key: raters may be vetted before their profile exists.
    rater_gmc: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=False), nullable=False, index=True),
    )
    scan_type: str | None = None
    discussed_with_senior: bool = Field(default=False)
    outcome: str
    points_delta: int
    raw_quality: int | None = None
    raw_appropriateness: int | None = None
    norm_quality: float | None = None
    norm_appropriateness: float | None = None
    feedback: str | None = None
    requester_name_at_request: str | None = None
    requester_hospital_at_request: str | None = None
    requester_specialty_at_request: str | None = None
    requester_grade_at_request: str | None = None
    requester_points_at_request: int


DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / ".data" / "vetting.db"
SQLITE_BUSY_TIMEOUT_SECONDS = 30.0

_RAW_COLUMNS = {
    "quality": Episode.raw_quality,
    "appropriateness": Episode.raw_appropriateness,
}


def _database_url() -> str:
    return (
        os.getenv("DATABASE_URL")
        or os.getenv("VETTING_DB_URL")
        or f"sqlite:///{DEFAULT_DB_PATH}"
    )


@lru_cache
def get_engine() -> Engine:
    """Create or return the cached database engine."""
    url = _database_url()
    if "DATABASE_URL" not in os.environ and "VETTING_DB_URL" not in os.environ:
        DEFAULT_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SECONDS
    engine = create_engine(url, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        _begin_immediate_on_sqlite(engine)
    return engine


def _begin_immediate_on_sqlite(engine: Engine) -> None:
    """Take the database write lock when each transaction begins.

    pysqlite defers BEGIN until the first write, so a read-modify-write of
    `requester.points` would otherwise read outside any lock. Transactions
    on one SQLite file are therefore serialised; `FOR UPDATE` covers the
    same ground on server databases.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_db() -> None:
    """Initialize the database tables."""
    # Reference models to register them in metadata
    _ = Requester, Rater, Episode

    engine = get_engine()
    try:
        SQLModel.metadata.create_all(engine)
    except OperationalError:
        # Tables may already exist (e.g. parallel test workers)
        pass
    _ensure_sqlite_episode_columns(engine)


def _ensure_sqlite_episode_columns(engine: Engine) -> None:
    """Add rating columns missing from databases created by older releases.

    `create_all()` does not alter existing tables, and early databases
    predate the rating and normalisation columns.
    """
    if engine.dialect.name != "sqlite":
        return

    with engine.connect() as conn:
        _add_missing_columns(
            conn,
            "episode",
            [
                ("raw_quality", "INTEGER NULL"),
                ("raw_appropriateness", "INTEGER NULL"),
                ("norm_quality", "REAL NULL"),
                ("norm_appropriateness", "REAL NULL"),
                ("scan_type", "TEXT NULL"),
                ("discussed_with_senior", "BOOLEAN NOT NULL DEFAULT 0"),
            ],
        )


def _add_missing_columns(
    conn: Connection, table: str, columns: list[tuple[str, str]]
) -> None:
    try:
        rows = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
    except OperationalError:
        return

    # PRAGMA table_info: (cid, name, type, notnull, dflt_value, pk)
    existing = {row[1] for row in rows}
    for column, ddl in columns:
        if column in existing:
            continue
        try:
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        except OperationalError:
            # Added concurrently by another process.
            continue
        logger.info("Added missing column %s.%s", table, column)
    conn.commit()


def reset_storage() -> None:
    """Clear all stored data (used for tests and demos)."""
    if os.getenv("ALLOW_STORAGE_RESET") != "1":
        raise RuntimeError(
            "reset_storage() requires ALLOW_STORAGE_RESET=1 environment variable. "
            "This function destroys all data and should only be used in tests."
        )
    _ = Requester, Rater, Episode
    get_engine.cache_clear()
    engine = get_engine()
    try:
        SQLModel.metadata.drop_all(engine)
    except OperationalError:
        pass
    init_db()


class Storage:
    """Repository wrapper around SQLModel sessions.

    Read helpers open their own session. Helpers that take a ``session``
    argument run inside a caller's ``transaction()`` so that the requester
    update and the episode insert commit together.
    """

    def __init__(self, engine: Engine) -> None:
        """Initialize the storage with a database engine."""
        self._engine = engine

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session that commits on exit and rolls back on error.

        Raises:
            PersistenceError: If the store rejects any statement or the commit.
        """
        with Session(self._engine) as session:
            try:
                yield session
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Transaction rolled back")
                raise PersistenceError("Save failed") from exc
            except Exception:
                session.rollback()
                raise

    # Requesters and raters

    def get_requester(self, gmc: str) -> Requester | None:
        """Fetch a requester by registration number."""
        with Session(self._engine) as session:
            return session.get(Requester, gmc)

    def insert_if_absent(self, session: Session, row: SQLModel) -> bool:
        """Insert ``row`` inside a savepoint unless its key already exists.

        Returns:
            True if the row was inserted, False if another transaction got
            there first. The outer transaction stays usable either way.
        """
        try:
            with session.begin_nested():
                session.add(row)
        except IntegrityError:
            logger.debug("%s already exists", type(row).__name__)
            return False
        return True

    def lock_requester(self, session: Session, gmc: str) -> Requester | None:
        """Fetch a requester row for update inside a transaction.

        SQLite ignores `FOR UPDATE`; there the transaction already holds the
        write lock from `BEGIN IMMEDIATE`.
        """
        statement = (
            select(Requester)
            .where(cast(Any, Requester.gmc) == gmc)
            .with_for_update()
        )
        return session.exec(statement).first()

    def get_rater(self, gmc: str) -> Rater | None:
        """Fetch a rater by registration number."""
        with Session(self._engine) as session:
            return session.get(Rater, gmc)

    def rater_ratings(
        self, session: Session, rater_gmc: str, dimension: Dimension
    ) -> list[int]:
        """Return a rater's raw ratings for one dimension, oldest first."""
        column = _RAW_COLUMNS[dimension]
        statement = (
            select(column)
            .where(cast(Any, Episode.rater_gmc) == rater_gmc)
            .where(col(column).is_not(None))
            .order_by(col(Episode.id))
        )
        return [int(value) for value in session.exec(statement)]

    # Requester view

    def outcome_counts(self, requester_gmc: str) -> dict[str, int]:
        """Count a requester's episodes per outcome."""
        with Session(self._engine) as session:
            statement = (
                select(Episode.outcome, func.count(col(Episode.id)))
                .where(cast(Any, Episode.requester_gmc) == requester_gmc)
                .group_by(col(Episode.outcome))
            )
            return {outcome: int(count) for outcome, count in session.exec(statement)}

    def rating_averages(
        self, requester_gmc: str
    ) -> tuple[float | None, float | None]:
        """Mean quality and appropriateness, normalised with raw fallback."""
        with Session(self._engine) as session:
            statement = select(
                func.avg(_preferred(Episode.norm_quality, Episode.raw_quality)),
                func.avg(
                    _preferred(Episode.norm_appropriateness, Episode.raw_appropriateness)
                ),
            ).where(cast(Any, Episode.requester_gmc) == requester_gmc)
            avg_quality, avg_appropriateness = session.exec(statement).one()
            return _as_float(avg_quality), _as_float(avg_appropriateness)

    def recent_episodes(self, requester_gmc: str, limit: int) -> list[Episode]:
        """Newest episodes for a requester."""
        with Session(self._engine) as session:
            statement = (
                select(Episode)
                .where(cast(Any, Episode.requester_gmc) == requester_gmc)
                .order_by(col(Episode.id).desc())
                .limit(limit)
            )
            return list(session.exec(statement))

    # Leaderboards and trends

    def requester_stats(
        self, *, hospital: str | None = None, specialty: str | None = None
    ) -> list[RequesterStats]:
        """Aggregate every requester in one grouped query.

        Requesters without episodes are included with zero counts. Rows come
        back in registration order, which the ranking keeps for ties.
        """

        def _count(outcome: str) -> Any:
            return func.sum(case((col(Episode.outcome) == outcome, 1), else_=0))

        statement = (
            select(
                Requester.gmc,
                Requester.name,
                Requester.hospital,
                Requester.specialty,
                Requester.grade,
                Requester.points,
                func.count(col(Episode.id)),
                _count("accepted"),
                _count("delayed"),
                _count("rejected"),
                _count("info_needed"),
                func.avg(_preferred(Episode.norm_quality, Episode.raw_quality)),
                func.avg(
                    _preferred(Episode.norm_appropriateness, Episode.raw_appropriateness)
                ),
            )
            .select_from(Requester)
            .outerjoin(Episode, col(Episode.requester_gmc) == col(Requester.gmc))
            .group_by(
                col(Requester.gmc),
                col(Requester.name),
                col(Requester.hospital),
                col(Requester.specialty),
                col(Requester.grade),
                col(Requester.points),
                col(Requester.created_at),
            )
            .order_by(col(Requester.created_at), col(Requester.gmc))
        )
        if hospital:
            statement = statement.where(cast(Any, Requester.hospital) == hospital)
        if specialty:
            statement = statement.where(cast(Any, Requester.specialty) == specialty)

        with Session(self._engine) as session:
            return [
                RequesterStats(
                    gmc=gmc,
                    name=name,
                    hospital=req_hospital,
                    specialty=req_specialty,
                    grade=grade,
                    points=int(points or 0),
                    total=int(total or 0),
                    accepted=int(accepted or 0),
                    delayed=int(delayed or 0),
                    rejected=int(rejected or 0),
                    info_needed=int(info_needed or 0),
                    avg_quality=_as_float(avg_quality),
                    avg_appropriateness=_as_float(avg_appropriateness),
                )
                for (
                    gmc,
                    name,
                    req_hospital,
                    req_specialty,
                    grade,
                    points,
                    total,
                    accepted,
                    delayed,
                    rejected,
                    info_needed,
                    avg_quality,
                    avg_appropriateness,
                ) in session.exec(statement)
            ]

    def rating_samples(
        self,
        *,
        since: datetime,
        normalized: bool,
        requester_gmc: str | None = None,
    ) -> list[RatingSample]:
        """Timestamps and rating pairs for episodes on or after ``since``."""
        if normalized:
            quality = _preferred(Episode.norm_quality, Episode.raw_quality)
            appropriateness = _preferred(
                Episode.norm_appropriateness, Episode.raw_appropriateness
            )
        else:
            quality = col(Episode.raw_quality)
            appropriateness = col(Episode.raw_appropriateness)

        statement = select(Episode.created_at, quality, appropriateness).where(
            col(Episode.created_at) >= since
        )
        if requester_gmc:
            statement = statement.where(
                cast(Any, Episode.requester_gmc) == requester_gmc
            )
        with Session(self._engine) as session:
            return [
                RatingSample(created_at, _as_float(q), _as_float(a))
                for created_at, q, a in session.exec(statement)
            ]

    def earliest_episode_at(self, requester_gmc: str | None = None) -> datetime | None:
        """Timestamp of the oldest episode on record."""
        statement = select(func.min(col(Episode.created_at)))
        if requester_gmc:
            statement = statement.where(
                cast(Any, Episode.requester_gmc) == requester_gmc
            )
        with Session(self._engine) as session:
            return cast(datetime | None, session.exec(statement).one())

    # Audit export

    def list_episodes(
        self, *, date_from: date | None = None, date_to: date | None = None
    ) -> list[Episode]:
        """Episodes newest first, optionally within an inclusive date range."""
        statement = select(Episode).order_by(
            col(Episode.created_at).desc(), col(Episode.id).desc()
        )
        if date_from is not None:
            statement = statement.where(
                col(Episode.created_at) >= datetime.combine(date_from, time.min)
            )
        if date_to is not None:
            statement = statement.where(
                col(Episode.created_at)
                < datetime.combine(date_to + timedelta(days=1), time.min)
            )
        with Session(self._engine) as session:
            return list(session.exec(statement))


def _preferred(normalized: Any, raw: Any) -> Any:
    return func.coalesce(col(normalized), col(raw))


def _as_float(value: object) -> float | None:
    return float(cast(Any, value)) if value is not None else None
