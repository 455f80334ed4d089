"""Review orchestration service.

Routes canonical webhook events, drives review runs through the engine and
writes results back through the platform connectors. Owns the process-wide
metrics.
"""

import logging
import time
from dataclasses import replace

from elreview.llm.provider import LLMProvider, Message
from elreview.llm.schemas import FixProposal
from elreview.notifications import (
    AUTO_FIX_GENERATED,
    ISSUE_ACTIVITY,
    PULL_REQUEST_IGNORED,
    PUSH_DETECTED,
    RELEASE_ACTIVITY,
    REVIEW_CANCELLED,
    REVIEW_COMPLETED,
    REVIEW_FAILED,
    REVIEW_STARTED,
    WORKFLOW_ACTIVITY,
    NotificationChannel,
)
from elreview.orchestrator.formatting import (
    format_auto_fix_comment,
    format_review_comment,
    format_suggestion_comment,
)
from elreview.orchestrator.metrics import Metrics, MetricsSnapshot
from elreview.orchestrator.runs import ReviewAlreadyRunning, ReviewRun, RunRegistry, RunStatus
from elreview.platforms import (
    ChangedFile,
    CommitState,
    CommitStatus,
    EventType,
    Platform,
    PlatformAPIError,
    PlatformClient,
    PlatformConfigError,
    WebhookEvent,
)
from elreview.prompts.templates import AUTO_FIX_PROMPT
from elreview.review.analyzer import detect_language
from elreview.review.engine import CancellationToken, ReviewCancelled, ReviewEngine
from elreview.review.models import ReviewRequest, ReviewResult, ReviewStatus, Severity, Suggestion
from elreview.server.config import Settings


logger = logging.getLogger(__name__)


REVIEW_ACTIONS = frozenset({"opened", "synchronize"})

# Suggestions at or below this confidence are never auto-applied
AUTO_FIX_CONFIDENCE = 0.8

# Lines of context around a finding sent to the fix prompt
FIX_CONTEXT_LINES = 5

COMMIT_STATES = {
    ReviewStatus.APPROVED: CommitState.SUCCESS,
    ReviewStatus.NEEDS_CHANGES: CommitState.PENDING,
    ReviewStatus.REJECTED: CommitState.FAILURE,
}

_LINE_COMMENT_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


class ReviewOrchestrator:
    """Coordinates connectors, the review engine and metrics."""

    def __init__(
        self,
        clients: dict[Platform, PlatformClient],
        engine: ReviewEngine,
        metrics: Metrics | None = None,
        notifications: NotificationChannel | None = None,
        settings: Settings | None = None,
        llm: LLMProvider | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            clients: Connector per configured platform
            engine: Review analysis engine
            metrics: Shared metrics object
            notifications: Channel for structured notifications
            settings: Review switches; defaults to Settings()
            llm: AI backend used to generate auto-fixes
        """
        self.clients = clients
        self.engine = engine
        self.metrics = metrics or Metrics()
        self.notifications = notifications or engine.notifications
        self.settings = settings or Settings()
        self.llm = llm
        self.runs = RunRegistry()

    # ------------------------------------------------------------------
    # Life cycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Authenticate every configured connector."""
        for platform, client in self.clients.items():
            await client.initialize()
            logger.info(f"{platform.value} connector ready")

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()

    def client_for(self, platform: Platform) -> PlatformClient:
        client = self.clients.get(platform)
        if client is None:
            raise PlatformConfigError(f"Platform {platform.value} not configured")
        return client

    # ------------------------------------------------------------------
    # Event routing
    # ------------------------------------------------------------------

    async def process_event(self, event: WebhookEvent) -> ReviewResult | None:
        """Route a canonical event.

        Returns:
            The ReviewResult when the event triggered a review, else None

        Raises:
            Exception: Any failure of a triggered review, after a
                ``review.failed`` notification has been published
        """
        self.metrics.record_webhook()
        repository = event.repository.full_name or event.repository.id

        if event.type == EventType.PULL_REQUEST:
            if event.action in REVIEW_ACTIONS and event.merge_request is not None:
                try:
                    return await self.review_pull_request(event)
                except ReviewAlreadyRunning as e:
                    self.notifications.publish(
                        PULL_REQUEST_IGNORED,
                        platform=event.platform.value,
                        repository=repository,
                        action=event.action,
                        reason=str(e),
                    )
                    return None
            self.notifications.publish(
                PULL_REQUEST_IGNORED,
                platform=event.platform.value,
                repository=repository,
                action=event.action,
            )
        elif event.type == EventType.PUSH:
            self.notifications.publish(
                PUSH_DETECTED,
                platform=event.platform.value,
                repository=repository,
                ref=event.payload.get("ref"),
                sender=event.sender.username,
            )
        elif event.type == EventType.ISSUE:
            self.notifications.publish(
                ISSUE_ACTIVITY,
                platform=event.platform.value,
                repository=repository,
                action=event.action,
            )
        elif event.type == EventType.RELEASE:
            self.notifications.publish(
                RELEASE_ACTIVITY,
                platform=event.platform.value,
                repository=repository,
                action=event.action,
            )
        elif event.type == EventType.WORKFLOW_RUN:
            self.notifications.publish(
                WORKFLOW_ACTIVITY,
                platform=event.platform.value,
                repository=repository,
                action=event.action,
            )
        return None

    async def review_pull_request(self, event: WebhookEvent) -> ReviewResult:
        """Review the merge request referenced by a pull_request event."""
        ref = event.merge_request
        if ref is None:
            raise ValueError(f"Event {event.id} carries no merge request reference")

        request = ReviewRequest(
            platform=event.platform,
            repository_id=ref.repository_id,
            pull_request_id=ref.number,
            head_sha=ref.head_sha,
        )
        return await self.review(request)

    # ------------------------------------------------------------------
    # Review runs
    # ------------------------------------------------------------------

    async def review(self, request: ReviewRequest) -> ReviewResult:
        """Run the full review pipeline for one merge request.

        Raises:
            ReviewAlreadyRunning: If the same head is already under review
            ReviewCancelled: If the run was cancelled
            PlatformClientError: On connector failures
        """
        run = self.runs.start(request)
        started = time.monotonic()
        self.notifications.publish(REVIEW_STARTED, run=run.key)

        try:
            client = self.client_for(request.platform)
            result, auto_fixes = await self._execute(client, run)
        except ReviewCancelled as e:
            run.advance(RunStatus.CANCELLED, error=str(e))
            self.notifications.publish(REVIEW_CANCELLED, run=run.key, reason=str(e))
            raise
        except Exception as e:
            run.advance(RunStatus.FAILED, error=str(e))
            self.notifications.publish(
                REVIEW_FAILED,
                run=run.key,
                platform=request.platform.value,
                repository=request.repository_id,
                pull_request_id=request.pull_request_id,
                error=str(e),
            )
            raise
        finally:
            self.runs.finish(run)

        duration = time.monotonic() - started
        self.metrics.record_review(
            duration=duration,
            security_issues=len(result.security_issues),
            performance_issues=len(result.performance_issues),
            human_review_recommended=result.metrics.human_review_recommended,
            auto_fixes=auto_fixes,
        )
        self.notifications.publish(
            REVIEW_COMPLETED,
            run=run.key,
            score=result.overall.score,
            status=result.overall.status.value,
            duration=round(duration, 3),
        )
        return result

    async def _execute(self, client: PlatformClient, run: ReviewRun) -> tuple[ReviewResult, int]:
        request = run.request
        token = run.token

        run.advance(RunStatus.ANALYZING)
        token.raise_if_cancelled()
        merge_request = await client.get_merge_request(
            request.repository_id, request.pull_request_id
        )
        head_sha = merge_request.head_sha or request.head_sha
        request = replace(
            request,
            head_sha=head_sha,
            title=merge_request.title,
            description=merge_request.description,
        )

        token.raise_if_cancelled()
        files = await client.get_changed_files(request.repository_id, request.pull_request_id)
        contents = await self._load_contents(client, request, self.engine.select_files(files), token)
        result = await self.engine.analyze(request, files, contents, token)

        auto_fixes = 0
        if self.settings.auto_review:
            run.advance(RunStatus.POSTING)
            await self._post_results(client, run, request, result, files)
            if self.settings.auto_fix:
                auto_fixes = await self._apply_auto_fixes(client, run, request, result, contents)

        run.advance(RunStatus.COMPLETED)
        return result, auto_fixes

    async def _load_contents(
        self,
        client: PlatformClient,
        request: ReviewRequest,
        files: list[ChangedFile],
        token: CancellationToken,
    ) -> dict[str, str]:
        # A file whose content cannot be fetched is left out; the engine
        # reports it as a failed file.
        contents: dict[str, str] = {}
        for file in files:
            token.raise_if_cancelled()
            try:
                contents[file.filename] = await client.get_file_content(
                    request.repository_id, file.filename, ref=request.head_sha
                )
            except PlatformAPIError as e:
                logger.warning(f"Could not fetch {file.filename}: {e}")
        return contents

    def partition_line_comments(
        self, result: ReviewResult, files: list[ChangedFile]
    ) -> tuple[list[Suggestion], list[Suggestion]]:
        """Split high/critical located suggestions into (anchorable, outside the diff).

        A line can only carry a review comment when it is inside a patch hunk;
        files without a patch are assumed anchorable.
        """
        diff_lines = {f.filename: f.commentable_lines() for f in files}
        anchored: list[Suggestion] = []
        outside: list[Suggestion] = []
        for suggestion in result.suggestions:
            if suggestion.severity not in _LINE_COMMENT_SEVERITIES:
                continue
            if not (suggestion.file and suggestion.line):
                continue
            lines = diff_lines.get(suggestion.file)
            if lines is not None and suggestion.line not in lines:
                outside.append(suggestion)
            else:
                anchored.append(suggestion)
        return anchored, outside

    async def _post_results(
        self,
        client: PlatformClient,
        run: ReviewRun,
        request: ReviewRequest,
        result: ReviewResult,
        files: list[ChangedFile],
    ) -> None:
        token = run.token
        repo, number = request.repository_id, request.pull_request_id
        anchored, outside = self.partition_line_comments(result, files)

        token.raise_if_cancelled()
        await client.post_comment(
            repo,
            number,
            format_review_comment(result, outside_diff=outside),
            idempotency_key=f"{run.key}:summary",
        )

        for suggestion in anchored:
            token.raise_if_cancelled()
            try:
                await client.post_comment(
                    repo,
                    number,
                    format_suggestion_comment(suggestion),
                    path=suggestion.file,
                    line=suggestion.line,
                    commit_sha=request.head_sha,
                    idempotency_key=f"{run.key}:{suggestion.id}",
                )
            except PlatformAPIError as e:
                # the commit status is posted even when an anchor is rejected
                logger.warning(
                    f"Line comment {suggestion.file}:{suggestion.line} rejected for {run.key}: {e}"
                )

        if request.head_sha:
            token.raise_if_cancelled()
            await client.update_commit_status(
                repo,
                request.head_sha,
                CommitStatus(
                    state=COMMIT_STATES[result.overall.status],
                    context=self.settings.status_context,
                    description=(
                        f"Score {result.overall.score}/100: "
                        f"{result.overall.status.value.replace('_', ' ')}"
                    ),
                ),
                idempotency_key=f"{run.key}:status",
            )
        else:
            logger.warning(f"No head commit for {run.key}, skipping commit status")

    # ------------------------------------------------------------------
    # Auto-fix
    # ------------------------------------------------------------------

    def fix_candidates(self, result: ReviewResult) -> list[Suggestion]:
        """Suggestions eligible for automatic fixing."""
        return [
            s
            for s in result.suggestions
            if s.auto_fixable and s.confidence > AUTO_FIX_CONFIDENCE
        ]

    async def _apply_auto_fixes(
        self,
        client: PlatformClient,
        run: ReviewRun,
        request: ReviewRequest,
        result: ReviewResult,
        contents: dict[str, str],
    ) -> int:
        candidates = self.fix_candidates(result)
        if not candidates:
            return 0

        fixes = []
        for suggestion in candidates:
            run.token.raise_if_cancelled()
            fixes.append((suggestion, await self.generate_fix(suggestion, contents)))
        self.notifications.publish(AUTO_FIX_GENERATED, run=run.key, count=len(fixes))

        if not self.settings.apply_fixes:
            logger.info(f"Generated {len(fixes)} fix(es) for {run.key}, apply_fixes is off")
            return 0

        run.token.raise_if_cancelled()
        await client.post_comment(
            request.repository_id,
            request.pull_request_id,
            format_auto_fix_comment(fixes),
            idempotency_key=f"{run.key}:autofix",
        )
        logger.info(f"Applied {len(fixes)} auto-fix(es) for {run.key}")
        return len(fixes)

    async def generate_fix(self, suggestion: Suggestion, contents: dict[str, str]) -> str:
        """Generate replacement code for a suggestion.

        Falls back to the suggestion's own fix text when no AI backend is set.
        """
        if self.llm is None:
            return suggestion.fix

        content = contents.get(suggestion.file, "")
        lines = content.splitlines()
        line = suggestion.line or 1
        start = max(0, line - 1 - FIX_CONTEXT_LINES)
        snippet = "\n".join(lines[start : line + FIX_CONTEXT_LINES])

        prompt = AUTO_FIX_PROMPT.format(
            filename=suggestion.file,
            line=line,
            title=suggestion.title,
            description=suggestion.description,
            language=detect_language(suggestion.file),
            content=snippet,
        )
        proposal = await self.llm.complete_structured(
            [Message(role="user", content=prompt)], FixProposal
        )
        return proposal.fixed_code

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    def reset_metrics(self) -> None:
        self.metrics.reset()
        logger.info("Metrics reset")
