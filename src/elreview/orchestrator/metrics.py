"""Process-wide review metrics."""

import threading
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of the counters."""

    webhooks_processed: int = 0
    reviews_completed: int = 0
    average_review_time: float = 0.0  # seconds
    security_issues_found: int = 0
    performance_issues_found: int = 0
    auto_fixes_applied: int = 0
    human_reviews_recommended: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class Metrics:
    """Thread-safe counters shared by concurrent review runs.

    Every mutation happens under one lock, so increments from parallel
    runs are never lost.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._webhooks_processed = 0
        self._reviews_completed = 0
        self._total_review_time = 0.0
        self._security_issues_found = 0
        self._performance_issues_found = 0
        self._auto_fixes_applied = 0
        self._human_reviews_recommended = 0

    def record_webhook(self) -> None:
        with self._lock:
            self._webhooks_processed += 1

    def record_review(
        self,
        duration: float,
        security_issues: int = 0,
        performance_issues: int = 0,
        human_review_recommended: bool = False,
        auto_fixes: int = 0,
    ) -> None:
        """Record one successfully completed review."""
        with self._lock:
            self._reviews_completed += 1
            self._total_review_time += duration
            self._security_issues_found += security_issues
            self._performance_issues_found += performance_issues
            self._auto_fixes_applied += auto_fixes
            if human_review_recommended:
                self._human_reviews_recommended += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            completed = self._reviews_completed
            return MetricsSnapshot(
                webhooks_processed=self._webhooks_processed,
                reviews_completed=completed,
                average_review_time=self._total_review_time / completed if completed else 0.0,
                security_issues_found=self._security_issues_found,
                performance_issues_found=self._performance_issues_found,
                auto_fixes_applied=self._auto_fixes_applied,
                human_reviews_recommended=self._human_reviews_recommended,
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()
