"""Unit tests for metrics and notifications."""

import threading

from elreview.notifications import (
    FILE_ANALYSIS_ERROR,
    REVIEW_STARTED,
    NotificationChannel,
)
from elreview.orchestrator import Metrics, MetricsSnapshot


class TestMetrics:
    """Tests for the Metrics counters."""

    def test_initial_snapshot(self):
        """Test that a new Metrics object starts at zero."""
        assert Metrics().snapshot() == MetricsSnapshot()

    def test_record_review(self):
        """Test that a completed review updates every counter."""
        metrics = Metrics()

        metrics.record_review(
            duration=2.0,
            security_issues=3,
            performance_issues=1,
            human_review_recommended=True,
            auto_fixes=2,
        )
        snapshot = metrics.snapshot()

        assert snapshot.reviews_completed == 1
        assert snapshot.average_review_time == 2.0
        assert snapshot.security_issues_found == 3
        assert snapshot.performance_issues_found == 1
        assert snapshot.human_reviews_recommended == 1
        assert snapshot.auto_fixes_applied == 2

    def test_average_is_running_mean(self):
        """Test that the average covers all completed reviews."""
        metrics = Metrics()
        for duration in (1.0, 2.0, 6.0):
            metrics.record_review(duration=duration)

        assert metrics.snapshot().average_review_time == 3.0

    def test_webhooks_counted_separately(self):
        """Test that webhook deliveries do not affect review counters."""
        metrics = Metrics()
        metrics.record_webhook()
        metrics.record_webhook()

        snapshot = metrics.snapshot()
        assert snapshot.webhooks_processed == 2
        assert snapshot.reviews_completed == 0
        assert snapshot.average_review_time == 0.0

    def test_reset(self):
        """Test that reset zeroes all counters."""
        metrics = Metrics()
        metrics.record_webhook()
        metrics.record_review(duration=1.0, security_issues=1)

        metrics.reset()

        assert metrics.snapshot() == MetricsSnapshot()

    def test_snapshot_is_a_copy(self):
        """Test that later updates do not change an earlier snapshot."""
        metrics = Metrics()
        before = metrics.snapshot()
        metrics.record_webhook()

        assert before.webhooks_processed == 0

    def test_to_dict_keys(self):
        """Test the exported metric names."""
        assert set(Metrics().snapshot().to_dict()) == {
            "webhooks_processed",
            "reviews_completed",
            "average_review_time",
            "security_issues_found",
            "performance_issues_found",
            "auto_fixes_applied",
            "human_reviews_recommended",
        }

    def test_concurrent_updates_not_lost(self):
        """Test that parallel increments are all counted."""
        metrics = Metrics()

        def work():
            for _ in range(1000):
                metrics.record_webhook()
                metrics.record_review(duration=0.001, security_issues=1)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = metrics.snapshot()
        assert snapshot.webhooks_processed == 8000
        assert snapshot.reviews_completed == 8000
        assert snapshot.security_issues_found == 8000


class TestNotificationChannel:
    """Tests for the notification buffer."""

    def test_publish_and_filter(self):
        """Test publishing and filtering by kind."""
        channel = NotificationChannel()
        channel.publish(REVIEW_STARTED, run="r1")
        channel.publish(FILE_ANALYSIS_ERROR, file="a.py", error="boom")

        assert len(channel.recent()) == 2
        errors = channel.recent(FILE_ANALYSIS_ERROR)
        assert len(errors) == 1
        assert errors[0].data == {"file": "a.py", "error": "boom"}

    def test_bounded(self):
        """Test that only the newest notifications are kept."""
        channel = NotificationChannel(maxlen=3)
        for i in range(5):
            channel.publish(REVIEW_STARTED, run=f"r{i}")

        assert [n.data["run"] for n in channel.recent()] == ["r2", "r3", "r4"]

    def test_drain(self):
        """Test that drain empties the buffer."""
        channel = NotificationChannel()
        channel.publish(REVIEW_STARTED, run="r1")

        assert len(channel.drain()) == 1
        assert channel.recent() == []

    def test_error_kinds_logged_as_warning(self, caplog):
        """Test that error notifications are logged at WARNING."""
        channel = NotificationChannel()
        with caplog.at_level("INFO", logger="elreview.notifications"):
            channel.publish(FILE_ANALYSIS_ERROR, file="a.py")
            channel.publish(REVIEW_STARTED, run="r1")

        levels = {r.getMessage().split("]")[0]: r.levelname for r in caplog.records}
        assert levels["[file.analysis_error"] == "WARNING"
        assert levels["[review.started"] == "INFO"
