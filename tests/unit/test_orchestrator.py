"""Unit tests for the review orchestrator."""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from elreview.llm.schemas import FixProposal
from elreview.notifications import (
    AUTO_FIX_GENERATED,
    FILE_ANALYSIS_ERROR,
    ISSUE_ACTIVITY,
    PULL_REQUEST_IGNORED,
    PUSH_DETECTED,
    REVIEW_CANCELLED,
    REVIEW_COMPLETED,
    REVIEW_FAILED,
    REVIEW_STARTED,
    NotificationChannel,
)
from elreview.orchestrator import (
    Metrics,
    ReviewAlreadyRunning,
    ReviewOrchestrator,
    RunStatus,
    run_key,
)
from elreview.orchestrator.service import COMMIT_STATES
from elreview.platforms import (
    ChangedFile,
    CommitState,
    EventType,
    FileStatus,
    GitUser,
    MergeRequestRef,
    Platform,
    PlatformAPIError,
    PlatformConfigError,
    Repository,
    WebhookEvent,
)
from elreview.review import (
    AnalysisReport,
    OverallAssessment,
    ReviewCancelled,
    ReviewEngine,
    ReviewMetrics,
    ReviewRequest,
    ReviewResult,
    ReviewStatus,
    Severity,
    Suggestion,
    SuggestionType,
    TestCoverageReport,
)
from elreview.server.config import Settings


REPOSITORY = Repository(
    id="42",
    name="webapp",
    full_name="acme/webapp",
    private=False,
    default_branch="main",
    language="Python",
    url="https://github.com/acme/webapp",
    clone_url="https://github.com/acme/webapp.git",
    owner=GitUser(id="1", username="acme", type="organization"),
)


def _event(
    event_type: EventType = EventType.PULL_REQUEST,
    action: str = "opened",
    platform: Platform = Platform.GITHUB,
    payload: dict | None = None,
) -> WebhookEvent:
    merge_request = None
    if event_type == EventType.PULL_REQUEST:
        merge_request = MergeRequestRef(repository_id="acme/webapp", number="7", head_sha="a" * 40)
    return WebhookEvent(
        id="evt-1",
        type=event_type,
        platform=platform,
        repository=REPOSITORY,
        sender=GitUser(id="5", username="octocat"),
        payload=payload or {},
        timestamp=time.time(),
        action=action,
        merge_request=merge_request,
    )


def _suggestion(
    index: int,
    severity: Severity = Severity.MEDIUM,
    auto_fixable: bool = False,
    confidence: float = 0.7,
    line: int | None = 3,
) -> Suggestion:
    return Suggestion(
        id=f"app/auth.py#{index}",
        type=SuggestionType.STYLE,
        severity=severity,
        title=f"Style: rule-{index}",
        description=f"Issue {index}",
        file="app/auth.py",
        line=line,
        fix=f"fixed line {index}",
        auto_fixable=auto_fixable,
        confidence=confidence,
    )


def _result(
    suggestions: tuple = (),
    status: ReviewStatus = ReviewStatus.APPROVED,
    score: int = 90,
    human_review: bool = False,
) -> ReviewResult:
    return ReviewResult(
        pull_request_id="7",
        overall=OverallAssessment(score=score, status=status, summary="summary"),
        files=(),
        suggestions=tuple(suggestions),
        security_issues=(),
        performance_issues=(),
        test_coverage=TestCoverageReport(overall=0, test_files=0, source_files=1),
        metrics=ReviewMetrics(
            total_files=1,
            lines_added=1,
            lines_deleted=0,
            complexity=1.0,
            review_time=0.1,
            human_review_recommended=human_review,
        ),
    )


def _stub_engine(result: ReviewResult) -> MagicMock:
    engine = MagicMock()
    engine.notifications = NotificationChannel()
    engine.select_files = MagicMock(side_effect=lambda files: files)
    engine.analyze = AsyncMock(return_value=result)
    return engine


@pytest.fixture
def settings():
    return Settings(_env_file=None, auto_review=True, auto_fix=False)


@pytest.fixture
def orchestrator(mock_platform_client, settings):
    return ReviewOrchestrator(
        clients={Platform.GITHUB: mock_platform_client},
        engine=ReviewEngine(),
        settings=settings,
    )


class TestEventRouting:
    """Tests for process_event routing."""

    @pytest.mark.asyncio
    async def test_opened_pull_request_posts_one_summary(self, orchestrator, mock_platform_client):
        """Test that an opened PR triggers a review with exactly one summary comment."""
        result = await orchestrator.process_event(_event())

        assert result is not None
        summary_calls = [
            c for c in mock_platform_client.post_comment.await_args_list
            if c.kwargs.get("path") is None
        ]
        assert len(summary_calls) == 1
        assert summary_calls[0].args[2].startswith("## 🤖 AI Code Review")
        assert orchestrator.get_metrics().reviews_completed == 1
        assert orchestrator.get_metrics().webhooks_processed == 1

    @pytest.mark.asyncio
    async def test_synchronize_triggers_review(self, orchestrator, mock_platform_client):
        """Test that new commits trigger a review."""
        await orchestrator.process_event(_event(action="synchronize"))

        mock_platform_client.get_merge_request.assert_awaited_once_with("acme/webapp", "7")

    @pytest.mark.asyncio
    async def test_other_pr_actions_ignored(self, orchestrator, mock_platform_client):
        """Test that closed PRs are passed through without analysis."""
        result = await orchestrator.process_event(_event(action="closed"))

        assert result is None
        mock_platform_client.get_merge_request.assert_not_awaited()
        ignored = orchestrator.notifications.recent(PULL_REQUEST_IGNORED)
        assert ignored[0].data["action"] == "closed"
        assert orchestrator.get_metrics().webhooks_processed == 1

    @pytest.mark.asyncio
    async def test_push_only_notifies(self, mock_platform_client, settings):
        """Test that push events never reach the engine."""
        engine = _stub_engine(_result())
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITLAB: mock_platform_client}, engine=engine, settings=settings
        )

        result = await orchestrator.process_event(
            _event(EventType.PUSH, action="", platform=Platform.GITLAB, payload={"ref": "refs/heads/main"})
        )

        assert result is None
        engine.analyze.assert_not_awaited()
        pushes = orchestrator.notifications.recent(PUSH_DETECTED)
        assert len(pushes) == 1
        assert pushes[0].data["ref"] == "refs/heads/main"
        assert pushes[0].data["platform"] == "gitlab"

    @pytest.mark.asyncio
    async def test_issue_activity(self, orchestrator):
        """Test that issue events publish activity notifications."""
        await orchestrator.process_event(_event(EventType.ISSUE, action="opened"))

        assert len(orchestrator.notifications.recent(ISSUE_ACTIVITY)) == 1
        assert orchestrator.notifications.recent(REVIEW_STARTED) == []


class TestReviewRun:
    """Tests for the review pipeline."""

    @pytest.mark.asyncio
    async def test_failing_file_is_isolated(self, orchestrator, mock_platform_client, sample_contents):
        """Test that an analyzer crash on file 2 leaves 2 results and one error notification."""

        class FlakyAnalyzer:
            def analyze(self, content, language):
                if content == sample_contents["app/views.py"]:
                    raise RuntimeError("analyzer crashed")
                return AnalysisReport()

        orchestrator.engine.analyzer = FlakyAnalyzer()

        result = await orchestrator.process_event(_event())

        assert len(result.files) == 2
        errors = orchestrator.notifications.recent(FILE_ANALYSIS_ERROR)
        assert len(errors) == 1
        assert errors[0].data["file"] == "app/views.py"

    @pytest.mark.asyncio
    async def test_content_fetch_failure_is_isolated(self, orchestrator, mock_platform_client, sample_contents):
        """Test that a file whose content cannot be read becomes a failed file."""

        async def get_content(repo_id, path, ref=None):
            if path == "app/utils.py":
                raise PlatformAPIError(Platform.GITHUB, 404, "not found")
            return sample_contents[path]

        mock_platform_client.get_file_content.side_effect = get_content

        result = await orchestrator.process_event(_event())

        assert result.failed_files == ("app/utils.py",)
        assert len(result.files) == 2

    @pytest.mark.asyncio
    async def test_content_fetched_at_head(self, orchestrator, mock_platform_client):
        """Test that file content is read at the merge request head."""
        await orchestrator.process_event(_event())

        for call in mock_platform_client.get_file_content.await_args_list:
            assert call.kwargs["ref"] == "a" * 40

    @pytest.mark.asyncio
    async def test_failure_publishes_and_reraises(self, orchestrator, mock_platform_client):
        """Test that an upstream error fails the run without touching review metrics."""
        mock_platform_client.get_changed_files.side_effect = PlatformAPIError(
            Platform.GITHUB, 502, "bad gateway"
        )

        with pytest.raises(PlatformAPIError):
            await orchestrator.process_event(_event())

        failed = orchestrator.notifications.recent(REVIEW_FAILED)
        assert len(failed) == 1
        assert "502" in failed[0].data["error"]
        snapshot = orchestrator.get_metrics()
        assert snapshot.webhooks_processed == 1
        assert snapshot.reviews_completed == 0
        assert snapshot.average_review_time == 0.0
        mock_platform_client.post_comment.assert_not_awaited()
        assert orchestrator.runs.active() == []

    @pytest.mark.asyncio
    async def test_unconfigured_platform(self, orchestrator):
        """Test that reviewing on a platform without a connector fails cleanly."""
        with pytest.raises(PlatformConfigError):
            await orchestrator.process_event(_event(platform=Platform.BITBUCKET))

        assert len(orchestrator.notifications.recent(REVIEW_FAILED)) == 1
        assert orchestrator.runs.active() == []

    @pytest.mark.asyncio
    async def test_duplicate_run_ignored(self, orchestrator, mock_platform_client):
        """Test that an in-flight head is not reviewed twice."""
        request = ReviewRequest(
            platform=Platform.GITHUB, repository_id="acme/webapp", pull_request_id="7", head_sha="a" * 40
        )
        orchestrator.runs.start(request)

        result = await orchestrator.process_event(_event())

        assert result is None
        ignored = orchestrator.notifications.recent(PULL_REQUEST_IGNORED)
        assert "already running" in ignored[0].data["reason"]
        mock_platform_client.get_merge_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_review_raises_for_duplicate(self, orchestrator):
        """Test that direct review calls surface duplicates."""
        request = ReviewRequest(
            platform=Platform.GITHUB, repository_id="acme/webapp", pull_request_id="7", head_sha="a" * 40
        )
        orchestrator.runs.start(request)

        with pytest.raises(ReviewAlreadyRunning):
            await orchestrator.review(request)

    @pytest.mark.asyncio
    async def test_cancelled_run(self, orchestrator, mock_platform_client):
        """Test that an operator cancel stops the run before posting."""
        request = ReviewRequest(
            platform=Platform.GITHUB, repository_id="acme/webapp", pull_request_id="7", head_sha="a" * 40
        )

        async def cancel_then_return(*args):
            orchestrator.runs.cancel(run_key(request), "superseded")
            return []

        mock_platform_client.get_changed_files.side_effect = cancel_then_return

        with pytest.raises(ReviewCancelled):
            await orchestrator.review(request)

        cancelled = orchestrator.notifications.recent(REVIEW_CANCELLED)
        assert cancelled[0].data["reason"] == "superseded"
        mock_platform_client.post_comment.assert_not_awaited()
        assert orchestrator.get_metrics().reviews_completed == 0

    @pytest.mark.asyncio
    async def test_notifications_sequence(self, orchestrator):
        """Test started and completed notifications for a successful run."""
        await orchestrator.process_event(_event())

        kinds = [n.kind for n in orchestrator.notifications.recent()]
        assert kinds.index(REVIEW_STARTED) < kinds.index(REVIEW_COMPLETED)

    @pytest.mark.asyncio
    async def test_auto_review_off_posts_nothing(self, mock_platform_client):
        """Test that disabling auto_review skips all writes."""
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITHUB: mock_platform_client},
            engine=ReviewEngine(),
            settings=Settings(_env_file=None, auto_review=False),
        )

        result = await orchestrator.process_event(_event())

        assert result is not None
        mock_platform_client.post_comment.assert_not_awaited()
        mock_platform_client.update_commit_status.assert_not_awaited()


class TestPosting:
    """Tests for comments and commit status."""

    @pytest.mark.asyncio
    async def test_line_comments_for_high_and_critical(self, mock_platform_client, settings):
        """Test that only high/critical suggestions with a location get line comments."""
        suggestions = (
            _suggestion(0, Severity.CRITICAL),
            _suggestion(1, Severity.HIGH),
            _suggestion(2, Severity.HIGH, line=None),
            _suggestion(3, Severity.MEDIUM),
            _suggestion(4, Severity.LOW),
        )
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITHUB: mock_platform_client},
            engine=_stub_engine(_result(suggestions, ReviewStatus.REJECTED, 40)),
            settings=settings,
        )

        await orchestrator.process_event(_event())

        calls = mock_platform_client.post_comment.await_args_list
        assert calls[0].kwargs.get("path") is None
        line_calls = [c for c in calls if c.kwargs.get("path")]
        assert [c.kwargs["idempotency_key"].rsplit(":", 1)[1] for c in line_calls] == [
            "app/auth.py#0",
            "app/auth.py#1",
        ]
        assert all(c.kwargs["commit_sha"] == "a" * 40 for c in line_calls)

    @pytest.mark.asyncio
    async def test_lines_outside_diff_go_to_summary(self, mock_platform_client, settings):
        """Test that only lines inside the patch hunks are anchored."""
        mock_platform_client.get_changed_files.return_value = [
            ChangedFile(
                filename="app/auth.py",
                status=FileStatus.MODIFIED,
                additions=1,
                changes=1,
                patch="@@ -2,2 +3,3 @@\n context\n+added\n context",
            )
        ]
        suggestions = (
            _suggestion(0, Severity.CRITICAL, line=1),
            _suggestion(1, Severity.HIGH, line=4),
        )
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITHUB: mock_platform_client},
            engine=_stub_engine(_result(suggestions, ReviewStatus.REJECTED, 40)),
            settings=settings,
        )

        await orchestrator.process_event(_event())

        calls = mock_platform_client.post_comment.await_args_list
        line_calls = [c for c in calls if c.kwargs.get("path")]
        assert [(c.kwargs["path"], c.kwargs["line"]) for c in line_calls] == [("app/auth.py", 4)]
        summary = calls[0].args[2]
        assert "Findings Outside the Diff (1)" in summary
        assert "`app/auth.py:1`" in summary
        mock_platform_client.update_commit_status.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_line_comment_does_not_abort(self, mock_platform_client, settings):
        """Test that a 422 on an anchored comment still lets the status and metrics through."""

        async def post_comment(repo, number, body, path=None, line=None, **kwargs):
            if path:
                raise PlatformAPIError(Platform.GITHUB, 422, f"POST /repos/{repo}/pulls/{number}/comments")
            return MagicMock()

        mock_platform_client.post_comment.side_effect = post_comment
        suggestions = (_suggestion(0, Severity.CRITICAL), _suggestion(1, Severity.HIGH))
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITHUB: mock_platform_client},
            engine=_stub_engine(_result(suggestions, ReviewStatus.REJECTED, 40)),
            settings=settings,
        )

        result = await orchestrator.process_event(_event())

        assert result is not None
        assert mock_platform_client.post_comment.await_count == 3
        commit_status = mock_platform_client.update_commit_status.await_args.args[2]
        assert commit_status.state == CommitState.FAILURE
        assert orchestrator.notifications.recent(REVIEW_FAILED) == []
        assert orchestrator.get_metrics().reviews_completed == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flagged", [True, False])
    async def test_summary_requests_human_review(self, mock_platform_client, settings, flagged):
        """Test that the summary asks for a human reviewer exactly when recommended."""
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITHUB: mock_platform_client},
            engine=_stub_engine(_result(human_review=flagged)),
            settings=settings,
        )

        await orchestrator.process_event(_event())

        summary = mock_platform_client.post_comment.await_args_list[0].args[2]
        assert ("Human review recommended" in summary) is flagged

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,state",
        [
            (ReviewStatus.APPROVED, CommitState.SUCCESS),
            (ReviewStatus.NEEDS_CHANGES, CommitState.PENDING),
            (ReviewStatus.REJECTED, CommitState.FAILURE),
        ],
    )
    async def test_commit_status_reflects_verdict(self, mock_platform_client, settings, status, state):
        """Test the verdict to commit state mapping."""
        orchestrator = ReviewOrchestrator(
            clients={Platform.GITHUB: mock_platform_client},
            engine=_stub_engine(_result(status=status, score=70)),
            settings=settings,
        )

        await orchestrator.process_event(_event())

        repo, sha, commit_status = mock_platform_client.update_commit_status.await_args.args
        assert (repo, sha) == ("acme/webapp", "a" * 40)
        assert commit_status.state == state
        assert commit_status.context == settings.status_context
        assert commit_status.description.startswith("Score 70/100")
        assert COMMIT_STATES[status] == state


class TestAutoFix:
    """Tests for auto-fix generation and application."""

    def _orchestrator(self, client, suggestions, **settings_kwargs):
        return ReviewOrchestrator(
            clients={Platform.GITHUB: client},
            engine=_stub_engine(_result(suggestions)),
            settings=Settings(_env_file=None, auto_review=True, auto_fix=True, **settings_kwargs),
        )

    @pytest.mark.asyncio
    async def test_confident_fix_applied(self, mock_platform_client):
        """Test that a 0.95 confidence fix is applied and a 0.5 one is not."""
        suggestions = (
            _suggestion(0, auto_fixable=True, confidence=0.95),
            _suggestion(1, auto_fixable=True, confidence=0.5),
        )
        orchestrator = self._orchestrator(mock_platform_client, suggestions)

        await orchestrator.process_event(_event())

        assert orchestrator.get_metrics().auto_fixes_applied == 1
        autofix_calls = [
            c for c in mock_platform_client.post_comment.await_args_list
            if c.kwargs.get("idempotency_key", "").endswith(":autofix")
        ]
        assert len(autofix_calls) == 1
        body = autofix_calls[0].args[2]
        assert "fixed line 0" in body
        assert "fixed line 1" not in body
        assert "Total fixes applied: 1" in body

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(self, mock_platform_client):
        """Test that confidence exactly at the threshold is not applied."""
        orchestrator = self._orchestrator(
            mock_platform_client, (_suggestion(0, auto_fixable=True, confidence=0.8),)
        )

        await orchestrator.process_event(_event())

        assert orchestrator.get_metrics().auto_fixes_applied == 0
        assert orchestrator.notifications.recent(AUTO_FIX_GENERATED) == []

    @pytest.mark.asyncio
    async def test_not_auto_fixable_skipped(self, mock_platform_client):
        """Test that high confidence alone is not enough."""
        orchestrator = self._orchestrator(
            mock_platform_client, (_suggestion(0, auto_fixable=False, confidence=0.99),)
        )

        await orchestrator.process_event(_event())

        assert orchestrator.get_metrics().auto_fixes_applied == 0

    @pytest.mark.asyncio
    async def test_dry_run_generates_without_applying(self, mock_platform_client):
        """Test that apply_fixes=False generates fixes but counts none."""
        orchestrator = self._orchestrator(
            mock_platform_client,
            (_suggestion(0, auto_fixable=True, confidence=0.95),),
            apply_fixes=False,
        )

        await orchestrator.process_event(_event())

        assert orchestrator.get_metrics().auto_fixes_applied == 0
        assert orchestrator.notifications.recent(AUTO_FIX_GENERATED)[0].data["count"] == 1

    @pytest.mark.asyncio
    async def test_fix_generated_by_llm(self, mock_platform_client):
        """Test that the AI backend produces the replacement code."""
        llm = MagicMock()
        llm.complete_structured = AsyncMock(
            return_value=FixProposal(fixed_code="return value", explanation="simplify")
        )
        orchestrator = self._orchestrator(
            mock_platform_client, (_suggestion(0, auto_fixable=True, confidence=0.95),)
        )
        orchestrator.llm = llm

        await orchestrator.process_event(_event())

        llm.complete_structured.assert_awaited_once()
        messages, schema = llm.complete_structured.await_args.args
        assert schema is FixProposal
        assert "app/auth.py" in messages[0].content
        autofix = mock_platform_client.post_comment.await_args_list[-1]
        assert "return value" in autofix.args[2]


class TestMetricsAccess:
    """Tests for metrics snapshot and reset through the orchestrator."""

    @pytest.mark.asyncio
    async def test_reset(self, orchestrator):
        """Test that reset clears every counter."""
        await orchestrator.process_event(_event())
        assert orchestrator.get_metrics().reviews_completed == 1

        orchestrator.reset_metrics()

        assert orchestrator.get_metrics().to_dict() == Metrics().snapshot().to_dict()

    @pytest.mark.asyncio
    async def test_lifecycle(self, orchestrator, mock_platform_client):
        """Test that start and close drive every connector."""
        await orchestrator.start()
        await orchestrator.close()

        mock_platform_client.initialize.assert_awaited_once()
        mock_platform_client.close.assert_awaited_once()


class TestRunRegistry:
    """Tests for review run life cycle."""

    def test_run_key(self):
        """Test the run key format, with and without a head."""
        request = ReviewRequest(platform=Platform.GITLAB, repository_id="15", pull_request_id="3")
        assert run_key(request) == "gitlab:15#3@HEAD"

    def test_invalid_transition(self, orchestrator):
        """Test that terminal runs cannot move again."""
        run = orchestrator.runs.start(
            ReviewRequest(platform=Platform.GITHUB, repository_id="r", pull_request_id="1")
        )
        run.advance(RunStatus.ANALYZING)
        run.advance(RunStatus.COMPLETED)

        assert run.finished
        assert run.finished_at is not None
        with pytest.raises(ValueError):
            run.advance(RunStatus.POSTING)

    def test_history_recorded(self, orchestrator):
        """Test that every status change is kept."""
        run = orchestrator.runs.start(
            ReviewRequest(platform=Platform.GITHUB, repository_id="r", pull_request_id="1")
        )
        run.advance(RunStatus.ANALYZING)
        run.advance(RunStatus.FAILED, error="boom")

        data = run.to_dict()
        assert data["history"] == ["triggered", "analyzing", "failed"]
        assert data["error"] == "boom"

    def test_cancel_unknown_run(self, orchestrator):
        """Test that cancelling an unknown key reports False."""
        assert orchestrator.runs.cancel("github:x#1@HEAD") is False
