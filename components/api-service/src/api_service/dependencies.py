"""FastAPI dependencies for shared resources."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from scoring.config import ScoringConfig

from .config import ApiConfig, get_config
from .gmc_lookup import GmcLookupClient
from .leaderboard import Leaderboard
from .ledger import NameResolver, ScoreLedger
from .storage import Storage, get_engine


@lru_cache(maxsize=1)
def get_lookup_client() -> GmcLookupClient:
    """Provide the process-wide register lookup client."""
    return GmcLookupClient()


def get_storage() -> Storage:
    """Provide a storage instance for request handlers."""
    return Storage(get_engine())


def get_scoring_config() -> ScoringConfig:
    """Provide the active scoring table."""
    return ScoringConfig.from_env()


def get_name_resolver(config: ApiConfig = Depends(get_config)) -> NameResolver | None:
    """Provide the register lookup, or None when disabled."""
    if not config.gmc_lookup_enabled:
        return None
    return get_lookup_client()


def get_ledger(
    storage: Storage = Depends(get_storage),
    config: ScoringConfig = Depends(get_scoring_config),
    name_resolver: NameResolver | None = Depends(get_name_resolver),
) -> ScoreLedger:
    """Provide a ledger bound to the request's storage."""
    return ScoreLedger(storage, config, name_resolver=name_resolver)


def get_leaderboard(
    storage: Storage = Depends(get_storage),
    config: ScoringConfig = Depends(get_scoring_config),
) -> Leaderboard:
    """Provide a leaderboard bound to the request's storage."""
    return Leaderboard(storage, config)
