"""Structured notifications for cross-cutting concerns.

Components publish small typed records instead of invoking callbacks. Every
notification is logged, and the most recent ones are retained so operators
and tests can inspect them.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any


logger = logging.getLogger(__name__)


# Notification kinds
FILE_ANALYSIS_ERROR = "file.analysis_error"
REVIEW_STARTED = "review.started"
REVIEW_COMPLETED = "review.completed"
REVIEW_FAILED = "review.failed"
REVIEW_CANCELLED = "review.cancelled"
PULL_REQUEST_IGNORED = "pull_request.ignored"
PUSH_DETECTED = "push.detected"
ISSUE_ACTIVITY = "issue.activity"
RELEASE_ACTIVITY = "release.activity"
WORKFLOW_ACTIVITY = "workflow.activity"
AUTO_FIX_GENERATED = "auto_fix.generated"

_ERROR_KINDS = {FILE_ANALYSIS_ERROR, REVIEW_FAILED}


@dataclass(frozen=True)
class Notification:
    """One published notification."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict, hash=False)
    timestamp: float = field(default_factory=time.time)


class NotificationChannel:
    """Bounded in-process notification buffer."""

    def __init__(self, maxlen: int = 1000):
        self._items: deque[Notification] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def publish(self, kind: str, **data: Any) -> Notification:
        notification = Notification(kind=kind, data=data)
        with self._lock:
            self._items.append(notification)

        level = logging.WARNING if kind in _ERROR_KINDS else logging.INFO
        logger.log(level, f"[{kind}] {data}")
        return notification

    def recent(self, kind: str | None = None) -> list[Notification]:
        """Buffered notifications, optionally filtered by kind."""
        with self._lock:
            items = list(self._items)
        if kind is None:
            return items
        return [n for n in items if n.kind == kind]

    def drain(self) -> list[Notification]:
        """Return and clear all buffered notifications."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items
