from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from scoring.config import SCORING_TABLES, ScoringConfig

from api_service.dependencies import get_name_resolver
from api_service.ledger import ScoreLedger
from api_service.main import app
from api_service.storage import Storage, get_engine, reset_storage


@pytest.fixture(autouse=True)
def allow_storage_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALLOW_STORAGE_RESET", "1")


@pytest.fixture(autouse=True)
def isolated_database(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, allow_storage_reset: None
) -> Iterator[None]:
    """Point the engine at a throwaway SQLite file for each test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'vetting.db'}")
    monkeypatch.delenv("VETTING_DB_URL", raising=False)
    monkeypatch.delenv("SCORING_TABLE_VERSION", raising=False)
    monkeypatch.delenv("STARTING_POINTS", raising=False)
    reset_storage()
    yield
    get_engine().dispose()
    get_engine.cache_clear()


@pytest.fixture()
def storage() -> Storage:
    return Storage(get_engine())


@pytest.fixture()
def config() -> ScoringConfig:
    return SCORING_TABLES["v2"]


@pytest.fixture()
def ledger(storage: Storage, config: ScoringConfig) -> ScoreLedger:
    return ScoreLedger(storage, config)


@pytest.fixture()
def client() -> Iterator[TestClient]:
    app.dependency_overrides[get_name_resolver] = lambda: None
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
