"""Data models for review analysis results."""

from dataclasses import dataclass
from enum import Enum

from elreview.platforms.models import Platform


class IssueType(str, Enum):
    """Raw severity reported by the metrics analyzer."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    """What a file issue is about."""

    SYNTAX = "syntax"
    STYLE = "style"
    COMPLEXITY = "complexity"
    SECURITY = "security"
    PERFORMANCE = "performance"


class Severity(str, Enum):
    """Severity of a suggestion or finding."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SuggestionType(str, Enum):
    """Kind of change a suggestion asks for."""

    BUG_RISK = "bug_risk"
    IMPROVEMENT = "improvement"
    STYLE = "style"
    SECURITY = "security"
    PERFORMANCE = "performance"


class ReviewStatus(str, Enum):
    """Overall verdict of a review."""

    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ReviewRequest:
    """Identifies the merge request under review."""

    platform: Platform
    repository_id: str
    pull_request_id: str
    head_sha: str | None = None
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class FileIssue:
    """A single finding in one file."""

    type: IssueType
    line: int
    column: int
    message: str
    rule: str
    category: IssueCategory
    auto_fixable: bool = False


@dataclass(frozen=True)
class FileAnalysisResult:
    """Per-file scores and issues."""

    filename: str
    language: str
    score: int
    complexity: int
    quality: float
    testability: float
    maintainability: float
    issues: tuple[FileIssue, ...] = ()


@dataclass(frozen=True)
class Suggestion:
    """A review suggestion derived from a file issue."""

    id: str
    type: SuggestionType
    severity: Severity
    title: str
    description: str
    file: str
    line: int | None = None
    fix: str = ""
    auto_fixable: bool = False
    confidence: float = 0.7


@dataclass(frozen=True)
class SecurityIssue:
    """A security vulnerability found in a file."""

    id: str
    severity: Severity
    title: str
    description: str
    file: str
    line: int | None = None
    cwe: str | None = None
    recommendation: str = ""
    auto_fixable: bool = False
    confidence: float = 0.8


@dataclass(frozen=True)
class PerformanceIssue:
    """A performance problem found in a file."""

    id: str
    severity: Severity
    title: str
    description: str
    file: str
    line: int | None = None
    impact: str = ""
    recommendation: str = ""
    auto_fixable: bool = False
    confidence: float = 0.8


@dataclass(frozen=True)
class TestCoverageReport:
    """Estimated test coverage of the change set."""

    __test__ = False  # not a pytest test class

    overall: int
    test_files: int
    source_files: int
    threshold: int = 80

    @property
    def meets_threshold(self) -> bool:
        return self.overall >= self.threshold


@dataclass(frozen=True)
class ReviewMetrics:
    """Aggregate metrics for one review."""

    total_files: int
    lines_added: int
    lines_deleted: int
    complexity: float
    review_time: float  # seconds
    human_review_recommended: bool


@dataclass(frozen=True)
class OverallAssessment:
    """Score and verdict for the whole merge request."""

    score: int
    status: ReviewStatus
    summary: str


@dataclass(frozen=True)
class ReviewResult:
    """Complete result of a review run."""

    pull_request_id: str
    overall: OverallAssessment
    files: tuple[FileAnalysisResult, ...]
    suggestions: tuple[Suggestion, ...]
    security_issues: tuple[SecurityIssue, ...]
    performance_issues: tuple[PerformanceIssue, ...]
    test_coverage: TestCoverageReport
    metrics: ReviewMetrics
    files_attempted: tuple[str, ...] = ()
    failed_files: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Summary form used by the HTTP API."""
        return {
            "pull_request_id": self.pull_request_id,
            "score": self.overall.score,
            "status": self.overall.status.value,
            "summary": self.overall.summary,
            "files": [
                {"filename": f.filename, "language": f.language, "score": f.score}
                for f in self.files
            ],
            "suggestions": len(self.suggestions),
            "security_issues": len(self.security_issues),
            "performance_issues": len(self.performance_issues),
            "test_coverage": self.test_coverage.overall,
            "human_review_recommended": self.metrics.human_review_recommended,
            "files_attempted": list(self.files_attempted),
            "failed_files": list(self.failed_files),
        }


@dataclass
class EngineOptions:
    """Tunables for the review engine."""

    parallel: bool = True
    max_concurrent_analyses: int = 4
    max_files_per_review: int = 50
    max_lines_per_file: int = 1000
    security_enabled: bool = True
    performance_enabled: bool = True
