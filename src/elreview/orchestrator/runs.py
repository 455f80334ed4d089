"""Review run life cycle and the in-flight run registry."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from elreview.review.engine import CancellationToken
from elreview.review.models import ReviewRequest


class RunStatus(str, Enum):
    """Status of a review run."""

    TRIGGERED = "triggered"
    ANALYZING = "analyzing"
    POSTING = "posting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    RunStatus.TRIGGERED: {RunStatus.ANALYZING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.ANALYZING: {
        RunStatus.POSTING,
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    },
    RunStatus.POSTING: {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
    RunStatus.CANCELLED: set(),
}


class ReviewAlreadyRunning(Exception):
    """Raised when the same merge request head is already under review."""

    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_key(request: ReviewRequest) -> str:
    """Registry key for a review run: ``platform:repo#mr@sha``."""
    return (
        f"{request.platform.value}:{request.repository_id}"
        f"#{request.pull_request_id}@{request.head_sha or 'HEAD'}"
    )


@dataclass
class ReviewRun:
    """One execution of the review pipeline for one merge request."""

    key: str
    request: ReviewRequest
    status: RunStatus = RunStatus.TRIGGERED
    token: CancellationToken = field(default_factory=CancellationToken)
    error: str | None = None
    history: list[RunStatus] = field(default_factory=lambda: [RunStatus.TRIGGERED])
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def finished(self) -> bool:
        return not _TRANSITIONS[self.status]

    def advance(self, status: RunStatus, error: str | None = None) -> None:
        """Move the run to a new status.

        Raises:
            ValueError: If the transition is not allowed
        """
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"Invalid run transition {self.status.value} -> {status.value}")
        self.status = status
        self.history.append(status)
        if error is not None:
            self.error = error
        if self.finished:
            self.finished_at = _utcnow()

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status.value,
            "history": [s.value for s in self.history],
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class RunRegistry:
    """Tracks in-flight runs so a head is never reviewed twice concurrently."""

    def __init__(self):
        self._lock = threading.Lock()
        self._runs: dict[str, ReviewRun] = {}

    def start(self, request: ReviewRequest) -> ReviewRun:
        """Register a new run.

        Raises:
            ReviewAlreadyRunning: If a run for the same key is in flight
        """
        key = run_key(request)
        with self._lock:
            if key in self._runs:
                raise ReviewAlreadyRunning(f"Review already running for {key}")
            run = ReviewRun(key=key, request=request)
            self._runs[key] = run
        return run

    def finish(self, run: ReviewRun) -> None:
        with self._lock:
            if self._runs.get(run.key) is run:
                del self._runs[run.key]

    def get(self, key: str) -> ReviewRun | None:
        with self._lock:
            return self._runs.get(key)

    def active(self) -> list[ReviewRun]:
        with self._lock:
            return list(self._runs.values())

    def cancel(self, key: str, reason: str = "cancelled by operator") -> bool:
        """Signal cancellation to an in-flight run. Returns False if unknown."""
        run = self.get(key)
        if run is None:
            return False
        run.token.cancel(reason)
        return True
