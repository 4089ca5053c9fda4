"""Best-effort doctor name lookup against the public GMC register.

Environment variables:
- GMC_LOOKUP_BASE_URL: Register base URL (optional; defaults to the public
  GMC site).
- GMC_LOOKUP_TIMEOUT_SECONDS: HTTP timeout in seconds (optional; default 5).
- GMC_LOOKUP_CACHE_DIR: Directory for disk cache (optional; defaults to the
  user cache dir).
- GMC_LOOKUP_CACHE_TTL_SECONDS: TTL for cached names (optional; defaults to
  30 days; 0 disables caching).
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import diskcache  # type: ignore[import-untyped]
import httpx
from bs4 import BeautifulSoup
from platformdirs import user_cache_dir
from scoring.validation import is_valid_gmc, normalise_name
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

GMC_DEFAULT_URL = "https://www.gmc-uk.org/doctors"
USER_AGENT = "Mozilla/5.0 (compatible; RadHub-QIP/1.0)"
DEFAULT_CACHE_TTL_SECONDS = 30 * 24 * 60 * 60

_NAME_PATTERN = re.compile(r"[A-Za-z\-'\s.]+")
# Cached marker for "looked up, no usable name".
_MISSING = ""
# Throttling and bot-blocking statuses clear on their own, like 5xx.
_TRANSIENT_STATUSES = frozenset({403, 429})


class _StatusError(Exception):
    """Raised on a register response that says nothing about the doctor."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"Register returned {status_code}")


class _ServerError(_StatusError):
    """Raised on 5xx, 403 and 429 responses to trigger tenacity retry."""


@dataclass(frozen=True)
class GmcLookupConfig:
    """Configuration for the register lookup client."""

    base_url: str = GMC_DEFAULT_URL
    timeout: float = 5.0
    cache_dir: str | None = None
    cache_ttl: int = DEFAULT_CACHE_TTL_SECONDS

    @classmethod
    def from_env(cls) -> "GmcLookupConfig":
        """Create GmcLookupConfig from environment variables."""
        raw_timeout = os.getenv("GMC_LOOKUP_TIMEOUT_SECONDS")
        try:
            timeout = float(raw_timeout) if raw_timeout else cls.timeout
        except ValueError:
            timeout = cls.timeout
        if timeout <= 0:
            timeout = cls.timeout

        raw_ttl = os.getenv("GMC_LOOKUP_CACHE_TTL_SECONDS")
        try:
            ttl = int(raw_ttl) if raw_ttl else cls.cache_ttl
        except ValueError:
            ttl = cls.cache_ttl
        return cls(
            base_url=os.getenv("GMC_LOOKUP_BASE_URL") or cls.base_url,
            timeout=timeout,
            cache_dir=os.getenv("GMC_LOOKUP_CACHE_DIR") or None,
            cache_ttl=max(0, ttl),
        )


def parse_register_name(html: str) -> str | None:
    """Extract a doctor's display name from a register page.

    Uses the first ``h1`` or ``[itemprop=name]`` element, falling back to the
    page title before any ``|``. Anything other than letters, spaces,
    hyphens, apostrophes and dots is treated as "no name".

    Examples:
        >>> parse_register_name("<h1>  Jane   Doe </h1>")
        'Jane Doe'
        >>> parse_register_name("<title>Dr A. O'Neil | GMC</title>")
        "Dr A. O'Neil"
    """
    soup = BeautifulSoup(html, "html.parser")
    node = soup.select_one("h1, [itemprop=name]")
    name = node.get_text(" ", strip=True) if node is not None else ""
    if not name and soup.title is not None:
        name = soup.title.get_text().split("|")[0]
    cleaned = normalise_name(name)
    if cleaned and _NAME_PATTERN.fullmatch(cleaned):
        return cleaned
    return None


class GmcLookupClient:
    """Client for register name lookups with caching and retry.

    Lookups never raise: any failure is logged and reported as ``None`` so
    callers can treat the name as optional enrichment.
    """

    def __init__(self, config: GmcLookupConfig | None = None) -> None:
        """Initialize the HTTP client and disk cache."""
        self.config = config or GmcLookupConfig.from_env()
        self._http = httpx.Client(
            timeout=self.config.timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        default_cache = Path(user_cache_dir("vetting-service", "radhub")) / "gmc"
        cache_path = (
            Path(self.config.cache_dir) if self.config.cache_dir else default_cache
        )
        cache_path.mkdir(parents=True, exist_ok=True)
        self._cache = diskcache.Cache(str(cache_path))

    def __enter__(self) -> "GmcLookupClient":
        """Enter context manager scope."""
        return self

    def __exit__(self, _exc_type: object, _exc: object, _tb: object) -> None:
        """Exit context manager scope and close resources."""
        self.close()

    def __call__(self, gmc: str) -> str | None:
        return self.lookup_name(gmc)

    def lookup_name(self, gmc: str) -> str | None:
        """Resolve a registration number to a display name, or None."""
        if not is_valid_gmc(gmc):
            return None
        gmc = gmc.strip()

        cache_key = f"gmc:{gmc}"
        cached = cast(str | None, self._cache.get(cache_key))
        if cached is not None:
            return cached or None

        try:
            html = self._fetch_with_retry(f"{self.config.base_url.rstrip('/')}/{gmc}")
        except (httpx.HTTPError, _StatusError) as exc:
            logger.warning("GMC lookup failed for %s: %s", gmc, exc)
            return None

        name = parse_register_name(html) if html is not None else None
        if self.config.cache_ttl:
            self._cache.set(cache_key, name or _MISSING, expire=self.config.cache_ttl)
        return name

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    def _fetch_with_retry(self, url: str) -> str | None:
        """GET a register page; None when the register has no such doctor.

        Only a 404 is a definite miss. Every other failure raises so that
        the caller does not cache it.
        """
        response = self._http.get(url)
        status = response.status_code
        if status >= 500 or status in _TRANSIENT_STATUSES:
            logger.warning("GMC register %d error, will retry", status)
            raise _ServerError(status)
        if status == 404:
            return None
        if not response.is_success:
            raise _StatusError(status)
        return response.text

    def close(self) -> None:
        """Close HTTP and cache resources."""
        self._http.close()
        self._cache.close()
