"""HTTP API for out-of-hours CT vetting, scoring and leaderboards."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, List

from dotenv import find_dotenv, load_dotenv
from fastapi import Body, Cookie, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from scoring.config import ScoringConfig
from scoring.errors import NotFoundError, PersistenceError, ScoringError, ValidationError
from scoring.validation import is_valid_gmc
from starlette.exceptions import HTTPException as StarletteHTTPException

from api_service.config import ApiConfig, get_config
from api_service.dependencies import (
    get_leaderboard,
    get_ledger,
    get_lookup_client,
    get_name_resolver,
    get_scoring_config,
    get_storage,
)
from api_service.export import export_episodes_csv
from api_service.leaderboard import Leaderboard
from api_service.ledger import NameResolver, ScoreLedger
from api_service.storage import Storage, init_db

# Load .env from repo root (find_dotenv walks up to find it)
load_dotenv(find_dotenv())

log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_str, logging.INFO)
if not isinstance(log_level, int):
    log_level = logging.INFO

# Override uvicorn's default configuration
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    force=True,
)
logging.getLogger("api_service").setLevel(log_level)
logging.getLogger("uvicorn").setLevel(log_level)
logging.getLogger("uvicorn.access").setLevel(log_level)
logging.getLogger("uvicorn.error").setLevel(log_level)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

MAX_RANK_LIMIT = 100
RAD_SESSION_COOKIE = "rad_session"


@asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncIterator[None]:
    """Initialize and teardown app state for the lifespan scope."""
    init_db()
    scoring = ScoringConfig.from_env()
    logger.info(
        "Vetting API starting: table=%s starting_points=%d ceiling=%s",
        scoring.table_version,
        scoring.starting_points,
        scoring.points_ceiling,
    )
    yield
    if get_lookup_client.cache_info().currsize:
        get_lookup_client().close()
        get_lookup_client.cache_clear()
    logger.info("Shutdown complete")


app = FastAPI(title="CT Vetting QIP API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(ApiConfig.from_env().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_ERROR_STATUS: dict[type[ScoringError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    PersistenceError: 500,
}


@app.exception_handler(ScoringError)
async def scoring_error_handler(request: Request, exc: ScoringError) -> JSONResponse:
    """Map domain errors to ``{"error": ...}`` responses."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTP exceptions with the same error shape."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


class VetRequest(BaseModel):
    """Payload for recording a vetting decision."""

    requester_gmc: str
    radiologist_gmc: str
    outcome: str
    scan_type: str | None = None
    reason: str | None = None
    discussed_with_senior: bool = False
    request_quality: int | str | None = None
    request_appropriateness: int | str | None = None
    name: str | None = None
    hospital: str | None = None
    specialty: str | None = None
    grade: str | None = None


class VetResponse(BaseModel):
    """Response after recording a vetting decision."""

    ok: bool
    points_change: int
    new_score: int


class ProfileUpdateRequest(BaseModel):
    """Payload for creating or updating a requester profile."""

    name: str | None = None
    hospital: str | None = None
    specialty: str | None = None
    grade: str | None = None


class ProfileUpdateResponse(BaseModel):
    """Response after a profile create/update."""

    ok: bool
    created: bool


class UserStats(BaseModel):
    """Aggregates shown on the requester dashboard."""

    counts: dict[str, int]
    avg_request_quality: float | None
    avg_request_appropriateness: float | None
    requestor_score_rating: float


class UserResponse(BaseModel):
    """Requester dashboard payload."""

    user: dict[str, Any]
    stats: UserStats
    requests: List[dict[str, Any]]


class RankResponse(BaseModel):
    """Leaderboard payload."""

    total: int
    rank_index: int
    percentile: int | None
    metric: str
    rows: List[dict[str, Any]]


class TrendPeriodResponse(BaseModel):
    """Aggregates for one period."""

    period: str
    start: str
    count: int
    avg_quality: float | None
    avg_appropriateness: float | None


class TrendsResponse(BaseModel):
    """Trend payload for the line graphs."""

    interval: str
    mode: str
    page: int
    limit: int
    has_more: bool
    periods: List[TrendPeriodResponse]


class GmcLookupResponse(BaseModel):
    """Register lookup payload."""

    gmc: str
    name: str | None


class UnlockRequest(BaseModel):
    """Payload for the radiologist access code."""

    code: str | int | None = None


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}


@app.get("/v1/scan-types")
def list_scan_types(
    config: ScoringConfig = Depends(get_scoring_config),
) -> dict[str, list[str]]:
    """Scan types a radiologist can choose from."""
    return {"scanTypes": list(config.scan_types)}


@app.get("/v1/outcomes")
def list_outcomes(
    config: ScoringConfig = Depends(get_scoring_config),
) -> dict[str, object]:
    """Outcome variants and their point consequences for the active table."""
    return {
        "version": config.table_version,
        "outcomes": [
            {"outcome": outcome, "points": config.delta_for(outcome)}
            for outcome in config.outcomes
        ],
    }


@app.post("/v1/rad/unlock")
def rad_unlock(
    response: Response,
    payload: UnlockRequest | None = Body(default=None),
    config: ApiConfig = Depends(get_config),
) -> dict[str, bool]:
    """Unlock the radiologist pages with the shared access code."""
    code = payload.code if payload else None
    if code is None or str(code) != config.rad_access_code:
        raise HTTPException(status_code=401, detail="Invalid code")
    response.set_cookie(
        RAD_SESSION_COOKIE,
        "1",
        httponly=True,
        samesite="lax",
        max_age=config.rad_session_minutes * 60,
    )
    return {"ok": True}


@app.get("/v1/rad/session")
def rad_session(
    rad_session: str | None = Cookie(default=None),
) -> dict[str, bool]:
    """Report whether the radiologist session cookie is present."""
    return {"active": rad_session == "1"}


@app.get("/v1/gmc/lookup/{gmc}")
def gmc_lookup(
    gmc: str,
    name_resolver: NameResolver | None = Depends(get_name_resolver),
) -> GmcLookupResponse:
    """Best-effort name lookup; ``name`` is null when unavailable."""
    gmc = gmc.strip()
    if not is_valid_gmc(gmc):
        raise HTTPException(status_code=400, detail="Invalid GMC")
    name = name_resolver(gmc) if name_resolver is not None else None
    return GmcLookupResponse(gmc=gmc, name=name)


@app.get("/v1/user/{gmc}")
def get_user(gmc: str, ledger: ScoreLedger = Depends(get_ledger)) -> UserResponse:
    """Requester dashboard: profile, outcome counts, averages, recent requests."""
    view = ledger.get_requester_view(gmc)
    return UserResponse(
        user=view.profile,
        stats=UserStats(
            counts=view.counts,
            avg_request_quality=view.avg_quality,
            avg_request_appropriateness=view.avg_appropriateness,
            requestor_score_rating=view.requestor_score_rating,
        ),
        requests=view.recent_episodes,
    )


@app.post("/v1/user/{gmc}/update")
def update_user(
    gmc: str,
    payload: ProfileUpdateRequest | None = Body(default=None),
    ledger: ScoreLedger = Depends(get_ledger),
) -> ProfileUpdateResponse:
    """Create a requester or update their profile fields."""
    updates = payload or ProfileUpdateRequest()
    result = ledger.update_profile(
        gmc,
        name=updates.name,
        hospital=updates.hospital,
        specialty=updates.specialty,
        grade=updates.grade,
    )
    return ProfileUpdateResponse(ok=True, created=result.created)


@app.post("/v1/vet")
def vet(payload: VetRequest, ledger: ScoreLedger = Depends(get_ledger)) -> VetResponse:
    """Record a vetting decision and return the requester's new score."""
    result = ledger.record_episode(
        requester_id=payload.requester_gmc,
        rater_id=payload.radiologist_gmc,
        outcome=payload.outcome,
        raw_quality=payload.request_quality,
        raw_appropriateness=payload.request_appropriateness,
        feedback=payload.reason,
        scan_type=payload.scan_type,
        discussed_with_senior=payload.discussed_with_senior,
        name=payload.name,
        hospital=payload.hospital,
        specialty=payload.specialty,
        grade=payload.grade,
    )
    return VetResponse(
        ok=True, points_change=result.points_delta, new_score=result.new_total
    )


@app.get("/v1/rank/{metric}")
def rank(
    metric: str,
    hospital: str | None = None,
    specialty: str | None = None,
    gmc: str | None = None,
    limit: int = 10,
    span: int = 3,
    leaderboard: Leaderboard = Depends(get_leaderboard),
) -> RankResponse:
    """Ranked requesters: top ``limit`` plus the rows around ``gmc``."""
    if limit <= 0 or limit > MAX_RANK_LIMIT or span < 0:
        raise HTTPException(status_code=400, detail="Invalid pagination parameters")
    window = leaderboard.ranking_window(
        metric,
        hospital=hospital,
        specialty=specialty,
        target_id=gmc,
        limit=limit,
        half_span=span,
    )
    return RankResponse(
        total=window.total,
        rank_index=window.rank_index,
        percentile=window.percentile,
        metric=metric,
        rows=[row.to_dict() for row in window.rows],
    )


@app.get("/v1/trends")
def trends(
    interval: str = "week",
    mode: str = "norm",
    limit: int = 12,
    page: int = 0,
    gmc: str | None = None,
    leaderboard: Leaderboard = Depends(get_leaderboard),
) -> TrendsResponse:
    """Episode counts and rating averages per day, ISO week or month."""
    page_data = leaderboard.trends(
        interval=interval, mode=mode, limit=limit, page=page, requester_id=gmc
    )
    return TrendsResponse(
        interval=page_data.interval,
        mode=page_data.mode,
        page=page_data.page,
        limit=page_data.limit,
        has_more=page_data.has_more,
        periods=[
            TrendPeriodResponse.model_validate(period.to_dict())
            for period in page_data.periods
        ],
    )


@app.get("/v1/export/all.csv")
def export_all_csv(
    request: Request,
    storage: Storage = Depends(get_storage),
) -> PlainTextResponse:
    """Raw audit CSV of every episode, optionally within a date range."""
    csv_text = export_episodes_csv(
        storage,
        date_from=request.query_params.get("from"),
        date_to=request.query_params.get("to"),
    )
    return PlainTextResponse(
        csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit_raw.csv"'},
    )
