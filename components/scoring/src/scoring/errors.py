"""Error taxonomy shared by the scoring core and the API service."""

from __future__ import annotations


class ScoringError(Exception):
    """Base exception for all scoring errors."""

    def __init__(self, message: str) -> None:
        """Initialize scoring error.

        Args:
            message: Human-readable error message, safe to return to callers.
        """
        self.message = message
        super().__init__(self.message)


class ValidationError(ScoringError):
    """Malformed input that the caller can correct. Raised before any write."""

    pass


class NotFoundError(ScoringError):
    """Requested requester or rater does not exist."""

    pass


class PersistenceError(ScoringError):
    """Storage or transaction failure. Not retried by the core."""

    pass
