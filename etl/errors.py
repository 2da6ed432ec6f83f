"""Exceptions raised across the leaderboard pipeline."""

from typing import Optional


class LeaderboardError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class ValidationError(LeaderboardError):
    """Malformed profile URL or a participant missing required fields. Never retried."""


class FetchError(LeaderboardError):
    """The profile host (or relay) failed or answered with a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProfileTimeoutError(FetchError):
    """A profile fetch ran past its time allowance; retried like any FetchError."""


class StoreError(LeaderboardError):
    """The participant collection could not be read or written."""


class DuplicateSubmission(LeaderboardError):
    """A profile the caller treated as new is already on the leaderboard."""

    def __init__(self, message: str, participant_id: Optional[str] = None):
        super().__init__(message)
        self.participant_id = participant_id


__all__ = [
    "LeaderboardError",
    "ValidationError",
    "FetchError",
    "ProfileTimeoutError",
    "StoreError",
    "DuplicateSubmission",
]
