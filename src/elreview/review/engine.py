"""Review analysis engine.

Turns a bounded set of changed files plus their content into a ReviewResult.
Each file goes through the metrics analyzer and, optionally, an AI security
and performance pass. Files are analyzed independently; one failing file
never aborts the batch.
"""

import asyncio
import inspect
import json
import logging
import re
import time
from dataclasses import dataclass

from pydantic import BaseModel, ValidationError

from elreview.llm.provider import LLMProvider
from elreview.llm.schemas import PerformanceFinding, SecurityFinding
from elreview.notifications import FILE_ANALYSIS_ERROR, NotificationChannel
from elreview.platforms.models import ChangedFile, FileStatus
from elreview.prompts.templates import PERFORMANCE_ANALYSIS_PROMPT, SECURITY_ANALYSIS_PROMPT
from elreview.review.analyzer import (
    AnalyzerFinding,
    HeuristicAnalyzer,
    MetricsAnalyzer,
    detect_language,
)
from elreview.review.models import (
    EngineOptions,
    FileAnalysisResult,
    FileIssue,
    IssueCategory,
    IssueType,
    OverallAssessment,
    PerformanceIssue,
    ReviewMetrics,
    ReviewRequest,
    ReviewResult,
    ReviewStatus,
    SecurityIssue,
    Severity,
    Suggestion,
    SuggestionType,
    TestCoverageReport,
)


logger = logging.getLogger(__name__)


BINARY_EXTENSIONS = (
    # images
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".psd",
    # fonts
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    # archives and packages
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".jar", ".war", ".whl", ".egg",
    # compiled objects
    ".exe", ".dll", ".so", ".dylib", ".a", ".o", ".obj", ".class", ".pyc", ".pyo", ".wasm",
    # media and documents
    ".pdf", ".mp3", ".mp4", ".wav", ".ogg", ".mov", ".avi", ".webm",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    # data blobs
    ".bin", ".dat", ".db", ".sqlite", ".pkl", ".npy", ".parquet",
)
GENERATED_PATTERNS = ("/dist/", "/build/", "/node_modules/", ".generated.", ".min.")
TEST_PATTERNS = (".test.", ".spec.", "/test/", "/tests/", "__tests__", "/test_", "_test.")

COMPLEXITY_KEYWORDS = ("if", "else", "for", "while", "switch", "case", "try", "catch")
COMPLEXITY_THRESHOLD = 15
COVERAGE_THRESHOLD = 80
COVERAGE_CAP = 90

APPROVE_SCORE = 80
NEEDS_CHANGES_SCORE = 60

_COMPLEXITY_RE = re.compile(r"\b(" + "|".join(COMPLEXITY_KEYWORDS) + r")\b", re.IGNORECASE)
_FUNCTION_RE = re.compile(r"\b(function|def|public|private)\b", re.IGNORECASE)
_JSON_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)

_RULE_CATEGORIES = {
    "security": IssueCategory.SECURITY,
    "perf": IssueCategory.PERFORMANCE,
    "performance": IssueCategory.PERFORMANCE,
    "complexity": IssueCategory.COMPLEXITY,
    "syntax": IssueCategory.SYNTAX,
    "style": IssueCategory.STYLE,
}

_SUGGESTION_TYPES = {
    IssueCategory.SECURITY: SuggestionType.SECURITY,
    IssueCategory.PERFORMANCE: SuggestionType.PERFORMANCE,
    IssueCategory.STYLE: SuggestionType.STYLE,
    IssueCategory.COMPLEXITY: SuggestionType.IMPROVEMENT,
    IssueCategory.SYNTAX: SuggestionType.BUG_RISK,
}


class ReviewCancelled(Exception):
    """Raised when a review run is cancelled between file analyses."""

    pass


class CancellationToken:
    """Cooperative cancellation flag shared by one review run."""

    def __init__(self):
        self._cancelled = False
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ReviewCancelled(self.reason)


# ----------------------------------------------------------------------
# File classification
# ----------------------------------------------------------------------


def _rooted(filename: str) -> str:
    # Platforms report repository-relative paths; root them so directory
    # patterns also match top-level directories.
    return "/" + filename.lstrip("/")


def is_binary_file(filename: str) -> bool:
    return filename.lower().endswith(BINARY_EXTENSIONS)


def is_generated_file(filename: str) -> bool:
    path = _rooted(filename)
    return any(pattern in path for pattern in GENERATED_PATTERNS)


def is_test_file(filename: str) -> bool:
    path = _rooted(filename)
    return any(pattern in path for pattern in TEST_PATTERNS)


# ----------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------


def calculate_complexity(content: str) -> int:
    """Count control-flow keywords, minimum 1."""
    return max(1, len(_COMPLEXITY_RE.findall(content)))


def calculate_quality(issue_count: int) -> float:
    return max(50.0, 100.0 - issue_count * 10)


def calculate_testability(content: str) -> float:
    return min(100.0, 60.0 + len(_FUNCTION_RE.findall(content)) * 5)


def calculate_maintainability(complexity: int, quality: float) -> float:
    return min(100.0, max(0.0, 100.0 - complexity * 2 + quality * 0.2))


def calculate_test_coverage(files: list[ChangedFile]) -> TestCoverageReport:
    """Estimate coverage from the ratio of test files to source files."""
    test_files = [f for f in files if is_test_file(f.filename)]
    source_files = [
        f for f in files if not is_test_file(f.filename) and not is_binary_file(f.filename)
    ]
    ratio = len(test_files) / len(source_files) if source_files else 0.0
    overall = round(min(ratio * 100, COVERAGE_CAP))
    return TestCoverageReport(
        overall=overall,
        test_files=len(test_files),
        source_files=len(source_files),
        threshold=COVERAGE_THRESHOLD,
    )


def calculate_overall_score(
    file_results: list[FileAnalysisResult],
    security_issues: list[SecurityIssue],
    performance_issues: list[PerformanceIssue],
    test_coverage: TestCoverageReport,
) -> int:
    """Average file score adjusted by findings and coverage, clamped to [0, 100]."""
    file_score = sum(f.score for f in file_results) / max(len(file_results), 1)
    security_penalty = 10 * sum(
        1 for i in security_issues if i.severity in (Severity.CRITICAL, Severity.HIGH)
    )
    performance_penalty = 5 * sum(1 for i in performance_issues if i.severity == Severity.HIGH)
    coverage_bonus = 10 if test_coverage.meets_threshold else 0

    score = file_score + coverage_bonus - security_penalty - performance_penalty
    return round(max(0.0, min(100.0, score)))


def determine_status(score: int, security_issues: list[SecurityIssue]) -> ReviewStatus:
    """Map a score to a verdict.

    A critical security issue rules out approval regardless of score.
    """
    has_critical = any(i.severity == Severity.CRITICAL for i in security_issues)
    if score >= APPROVE_SCORE and not has_critical:
        return ReviewStatus.APPROVED
    if score >= NEEDS_CHANGES_SCORE and not has_critical:
        return ReviewStatus.NEEDS_CHANGES
    return ReviewStatus.REJECTED


def build_summary(
    score: int,
    status: ReviewStatus,
    security_issues: list[SecurityIssue],
    performance_issues: list[PerformanceIssue],
    test_coverage: TestCoverageReport,
    failed_files: list[str],
) -> str:
    summary = f"Code quality score: {score}/100. "
    if status == ReviewStatus.APPROVED:
        summary += "This pull request meets quality standards and can be approved."
    elif status == ReviewStatus.NEEDS_CHANGES:
        summary += "This pull request needs minor improvements before approval."
    else:
        summary += "This pull request requires significant changes before approval."

    if security_issues:
        summary += f" Found {len(security_issues)} security issue(s)."
    if performance_issues:
        summary += f" Found {len(performance_issues)} performance issue(s)."
    if not test_coverage.meets_threshold:
        summary += f" Test coverage ({test_coverage.overall}%) is below threshold."
    if failed_files:
        summary += f" {len(failed_files)} file(s) could not be analyzed."
    return summary


# ----------------------------------------------------------------------
# Finding translation
# ----------------------------------------------------------------------


def to_file_issue(finding: AnalyzerFinding) -> FileIssue:
    """Normalize a raw analyzer finding into a categorized FileIssue."""
    try:
        issue_type = IssueType(finding.severity.lower())
    except ValueError:
        issue_type = IssueType.WARNING

    category = _RULE_CATEGORIES.get(finding.category.lower()) if finding.category else None
    if category is None:
        prefix = finding.rule.split("/", 1)[0].lower()
        category = _RULE_CATEGORIES.get(prefix, IssueCategory.STYLE)

    return FileIssue(
        type=issue_type,
        line=finding.line,
        column=finding.column,
        message=finding.message,
        rule=finding.rule,
        category=category,
        auto_fixable=finding.auto_fixable,
    )


def suggestion_severity(issue: FileIssue) -> Severity:
    if issue.type == IssueType.ERROR:
        return Severity.CRITICAL if issue.category == IssueCategory.SECURITY else Severity.HIGH
    if issue.type == IssueType.WARNING:
        return Severity.MEDIUM
    return Severity.LOW


def to_suggestion(issue: FileIssue, filename: str, index: int) -> Suggestion:
    return Suggestion(
        id=f"{filename}#{index}",
        type=_SUGGESTION_TYPES[issue.category],
        severity=suggestion_severity(issue),
        title=f"{issue.category.value.capitalize()}: {issue.rule}",
        description=issue.message,
        file=filename,
        line=issue.line,
        fix=f"Consider refactoring this code to improve {issue.category.value}",
        auto_fixable=issue.auto_fixable,
        confidence=0.9 if issue.auto_fixable else 0.7,
    )


def parse_findings(content: str, schema: type[BaseModel]) -> list:
    """Leniently parse a JSON array of findings from an AI response.

    Malformed JSON yields no findings; malformed items are skipped.
    """
    match = _JSON_ARRAY_RE.search(content or "")
    if match is None:
        logger.debug("AI response contained no JSON array")
        return []
    try:
        raw = json.loads(match.group(0))
    except ValueError as e:
        logger.warning(f"Could not parse AI findings: {e}")
        return []

    findings = []
    for item in raw if isinstance(raw, list) else []:
        try:
            findings.append(schema.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Skipping malformed AI finding: {e}")
    return findings


@dataclass
class _FileOutcome:
    result: FileAnalysisResult
    suggestions: list[Suggestion]
    security_issues: list[SecurityIssue]
    performance_issues: list[PerformanceIssue]


class ReviewEngine:
    """Analyzes changed files and aggregates a ReviewResult."""

    def __init__(
        self,
        analyzer: MetricsAnalyzer | None = None,
        llm: LLMProvider | None = None,
        options: EngineOptions | None = None,
        notifications: NotificationChannel | None = None,
    ):
        self.analyzer = analyzer or HeuristicAnalyzer()
        self.llm = llm
        self.options = options or EngineOptions()
        self.notifications = notifications or NotificationChannel()

    def select_files(self, files: list[ChangedFile]) -> list[ChangedFile]:
        """Drop files that should not be reviewed and cap the batch size."""
        selected = []
        for f in files:
            if f.status == FileStatus.REMOVED:
                continue
            if is_binary_file(f.filename) or is_generated_file(f.filename):
                continue
            if f.changes > self.options.max_lines_per_file:
                logger.info(f"Skipping {f.filename}: {f.changes} changed lines")
                continue
            selected.append(f)

        if len(selected) > self.options.max_files_per_review:
            logger.info(
                f"Reviewing first {self.options.max_files_per_review} of {len(selected)} files"
            )
            selected = selected[: self.options.max_files_per_review]
        return selected

    async def analyze(
        self,
        request: ReviewRequest,
        files: list[ChangedFile],
        contents: dict[str, str],
        token: CancellationToken | None = None,
    ) -> ReviewResult:
        """Review a merge request.

        Args:
            request: Merge request being reviewed
            files: Changed files as reported by the platform
            contents: File content keyed by filename
            token: Optional cancellation token, checked before each file

        Returns:
            Aggregated ReviewResult

        Raises:
            ReviewCancelled: If the token is cancelled mid-run
        """
        started = time.monotonic()
        selected = self.select_files(files)
        logger.info(
            f"Analyzing {len(selected)} file(s) for {request.repository_id}"
            f"#{request.pull_request_id}"
        )

        if self.options.parallel:
            outcomes = await self._analyze_parallel(selected, contents, token)
        else:
            outcomes = await self._analyze_sequential(selected, contents, token)

        succeeded: list[tuple[ChangedFile, _FileOutcome]] = []
        failed_files: list[str] = []
        for file, outcome in zip(selected, outcomes):
            if isinstance(outcome, ReviewCancelled):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failed_files.append(file.filename)
                logger.warning(f"Analysis failed for {file.filename}: {outcome}")
                self.notifications.publish(
                    FILE_ANALYSIS_ERROR,
                    pull_request_id=request.pull_request_id,
                    repository_id=request.repository_id,
                    file=file.filename,
                    error=str(outcome),
                )
            else:
                succeeded.append((file, outcome))

        return self._aggregate(request, selected, succeeded, failed_files, started)

    async def _analyze_parallel(self, files, contents, token):
        semaphore = asyncio.Semaphore(max(1, self.options.max_concurrent_analyses))

        async def bounded(file: ChangedFile) -> _FileOutcome:
            async with semaphore:
                return await self.analyze_file(file, contents, token)

        return await asyncio.gather(*(bounded(f) for f in files), return_exceptions=True)

    async def _analyze_sequential(self, files, contents, token):
        outcomes: list = []
        for file in files:
            try:
                outcomes.append(await self.analyze_file(file, contents, token))
            except ReviewCancelled:
                raise
            except Exception as e:
                outcomes.append(e)
        return outcomes

    async def analyze_file(
        self,
        file: ChangedFile,
        contents: dict[str, str],
        token: CancellationToken | None = None,
    ) -> _FileOutcome:
        if token is not None:
            token.raise_if_cancelled()

        content = contents.get(file.filename)
        if content is None:
            raise LookupError(f"No content loaded for {file.filename}")

        language = file.language or detect_language(file.filename)
        report = self.analyzer.analyze(content, language)
        if inspect.isawaitable(report):
            report = await report

        issues = [to_file_issue(f) for f in report.findings]
        complexity = calculate_complexity(content)
        quality = calculate_quality(len(issues))
        testability = calculate_testability(content)
        maintainability = calculate_maintainability(complexity, quality)
        score = round((quality + testability + maintainability) / 3)

        result = FileAnalysisResult(
            filename=file.filename,
            language=language,
            score=max(0, min(100, score)),
            complexity=complexity,
            quality=quality,
            testability=testability,
            maintainability=maintainability,
            issues=tuple(issues),
        )

        suggestions = [to_suggestion(issue, file.filename, i) for i, issue in enumerate(issues)]
        security_issues = [
            SecurityIssue(
                id=f"security-{s.id}",
                severity=s.severity,
                title=s.title,
                description=s.description,
                file=s.file,
                line=s.line,
                recommendation=s.fix,
                auto_fixable=s.auto_fixable,
                confidence=s.confidence,
            )
            for s in suggestions
            if s.type == SuggestionType.SECURITY
        ]
        performance_issues = [
            PerformanceIssue(
                id=f"performance-{s.id}",
                severity=s.severity,
                title=s.title,
                description=s.description,
                file=s.file,
                line=s.line,
                recommendation=s.fix,
                auto_fixable=s.auto_fixable,
                confidence=s.confidence,
            )
            for s in suggestions
            if s.type == SuggestionType.PERFORMANCE
        ]

        if self.llm is not None:
            if self.options.security_enabled:
                security_issues.extend(await self._ai_security(file.filename, language, content))
            if self.options.performance_enabled:
                performance_issues.extend(
                    await self._ai_performance(file.filename, language, content)
                )

        return _FileOutcome(result, suggestions, security_issues, performance_issues)

    def _prompt_content(self, content: str) -> str:
        lines = content.splitlines()
        return "\n".join(lines[: self.options.max_lines_per_file])

    async def _ai_security(self, filename: str, language: str, content: str) -> list[SecurityIssue]:
        prompt = SECURITY_ANALYSIS_PROMPT.format(
            language=language, filename=filename, content=self._prompt_content(content)
        )
        response = await self.llm.generate(prompt, max_tokens=1000, temperature=0.1)
        return [
            SecurityIssue(
                id=f"security-{filename}-ai{i}",
                severity=Severity(f.severity),
                title=f.title,
                description=f.description or "Security vulnerability found",
                file=filename,
                line=f.line,
                cwe=f.cwe,
                recommendation=f.recommendation or "Review and fix this security issue",
            )
            for i, f in enumerate(parse_findings(response.content, SecurityFinding))
        ]

    async def _ai_performance(
        self, filename: str, language: str, content: str
    ) -> list[PerformanceIssue]:
        prompt = PERFORMANCE_ANALYSIS_PROMPT.format(
            language=language, filename=filename, content=self._prompt_content(content)
        )
        response = await self.llm.generate(prompt, max_tokens=1000, temperature=0.1)
        return [
            PerformanceIssue(
                id=f"performance-{filename}-ai{i}",
                severity=Severity(f.severity),
                title=f.title,
                description=f.description or "Performance issue found",
                file=filename,
                line=f.line,
                impact=f.impact or "May impact application performance",
                recommendation=f.recommendation,
            )
            for i, f in enumerate(parse_findings(response.content, PerformanceFinding))
        ]

    def _aggregate(
        self,
        request: ReviewRequest,
        selected: list[ChangedFile],
        succeeded: list[tuple[ChangedFile, _FileOutcome]],
        failed_files: list[str],
        started: float,
    ) -> ReviewResult:
        file_results = [o.result for _, o in succeeded]
        suggestions = [s for _, o in succeeded for s in o.suggestions]
        security_issues = [i for _, o in succeeded for i in o.security_issues]
        performance_issues = [i for _, o in succeeded for i in o.performance_issues]

        test_coverage = calculate_test_coverage(selected)
        score = calculate_overall_score(
            file_results, security_issues, performance_issues, test_coverage
        )
        status = determine_status(score, security_issues)

        avg_complexity = sum(f.complexity for f in file_results) / max(len(file_results), 1)
        metrics = ReviewMetrics(
            total_files=len(file_results),
            lines_added=sum(f.additions for f, _ in succeeded),
            lines_deleted=sum(f.deletions for f, _ in succeeded),
            complexity=avg_complexity,
            review_time=time.monotonic() - started,
            human_review_recommended=(
                avg_complexity > COMPLEXITY_THRESHOLD or any(f.score < 60 for f in file_results)
            ),
        )

        result = ReviewResult(
            pull_request_id=request.pull_request_id,
            overall=OverallAssessment(
                score=score,
                status=status,
                summary=build_summary(
                    score, status, security_issues, performance_issues, test_coverage, failed_files
                ),
            ),
            files=tuple(file_results),
            suggestions=tuple(suggestions),
            security_issues=tuple(security_issues),
            performance_issues=tuple(performance_issues),
            test_coverage=test_coverage,
            metrics=metrics,
            files_attempted=tuple(f.filename for f in selected),
            failed_files=tuple(failed_files),
        )
        logger.info(
            f"Review of {request.repository_id}#{request.pull_request_id}: "
            f"{status.value} ({score}/100), {len(file_results)}/{len(selected)} files analyzed"
        )
        return result
