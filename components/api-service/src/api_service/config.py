"""Configuration for the vetting API service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_RAD_CODE = "080299"
DEFAULT_RAD_SESSION_MINUTES = 30
DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the API service.

    Attributes:
        rad_access_code: Shared code that unlocks the radiologist pages.
        rad_session_minutes: Lifetime of the radiologist session cookie.
        cors_origins: Origins allowed to call the API with credentials.
        gmc_lookup_enabled: Whether names are resolved from the GMC register.
    """

    rad_access_code: str = DEFAULT_RAD_CODE
    rad_session_minutes: int = DEFAULT_RAD_SESSION_MINUTES
    cors_origins: tuple[str, ...] = field(default=DEFAULT_CORS_ORIGINS)
    gmc_lookup_enabled: bool = True

    @staticmethod
    def from_env() -> "ApiConfig":
        """Create ApiConfig from environment variables."""
        raw_minutes = os.getenv("RAD_SESSION_MINUTES")
        try:
            minutes = int(raw_minutes) if raw_minutes else DEFAULT_RAD_SESSION_MINUTES
        except ValueError:
            minutes = DEFAULT_RAD_SESSION_MINUTES
        if minutes <= 0:
            minutes = DEFAULT_RAD_SESSION_MINUTES

        origins_env = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
        origins = (
            tuple(o.strip() for o in origins_env.split(",") if o.strip())
            if origins_env
            else DEFAULT_CORS_ORIGINS
        )
        return ApiConfig(
            rad_access_code=os.getenv("RAD_CODE") or DEFAULT_RAD_CODE,
            rad_session_minutes=minutes,
            cors_origins=origins,
            gmc_lookup_enabled=_env_flag("GMC_LOOKUP_ENABLED", True),
        )


def get_config() -> ApiConfig:
    """Get the current API configuration."""
    return ApiConfig.from_env()
