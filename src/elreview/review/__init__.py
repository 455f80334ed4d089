"""Review analysis engine for elreview."""

from elreview.review.analyzer import (
    AnalysisReport,
    AnalyzerFinding,
    HeuristicAnalyzer,
    MetricsAnalyzer,
    detect_language,
)
from elreview.review.engine import (
    CancellationToken,
    ReviewCancelled,
    ReviewEngine,
    calculate_overall_score,
    determine_status,
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

__all__ = [
    # Engine
    "ReviewEngine",
    "CancellationToken",
    "ReviewCancelled",
    "calculate_overall_score",
    "determine_status",
    # Analyzer
    "MetricsAnalyzer",
    "HeuristicAnalyzer",
    "AnalysisReport",
    "AnalyzerFinding",
    "detect_language",
    # Models
    "EngineOptions",
    "ReviewRequest",
    "ReviewResult",
    "OverallAssessment",
    "ReviewStatus",
    "FileAnalysisResult",
    "FileIssue",
    "IssueType",
    "IssueCategory",
    "Suggestion",
    "SuggestionType",
    "SecurityIssue",
    "PerformanceIssue",
    "Severity",
    "TestCoverageReport",
    "ReviewMetrics",
]
