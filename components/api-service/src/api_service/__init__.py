"""api-service package."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from api_service import export, gmc_lookup, leaderboard, ledger, storage

__all__ = ["export", "gmc_lookup", "leaderboard", "ledger", "storage"]


def __getattr__(name: str):
    """Lazy module exports so importing a submodule does not configure logging."""
    if name in __all__:
        return importlib.import_module(f"{__name__}.{name}")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
