"""Exceptions raised by the tracking core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import TimeLogRecord


class PracticeTrackError(Exception):
    """Base exception for tracking errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConflictError(PracticeTrackError):
    """A timer is already running for this actor."""

    status_code = 409

    def __init__(self, message: str, *, active_task_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.active_task_id = active_task_id


class NoActiveTimerError(PracticeTrackError):
    """Stop was requested while no timer is running."""

    status_code = 404


class InvalidTransitionError(PracticeTrackError):
    """Status change rejected by a strict lifecycle."""

    status_code = 409


class InvalidTimeLogError(PracticeTrackError):
    """Time log entry violates the ledger invariants."""

    status_code = 400


class NotFoundError(PracticeTrackError):
    """Requested record does not exist."""

    status_code = 404


class TimeLogPersistenceError(PracticeTrackError):
    """The computed entry could not be stored and was queued for retry."""

    status_code = 503

    def __init__(self, message: str, *, entry: "TimeLogRecord") -> None:
        super().__init__(message)
        self.entry = entry
