"""Language detection and the pluggable per-file metrics analyzer."""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Awaitable, Protocol


# Language detection by file extension
LANGUAGE_EXTENSIONS = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
    ".sh": "bash",
    ".bash": "bash",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".md": "markdown",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".vue": "vue",
}

SPECIAL_FILENAMES = {
    "Dockerfile": "dockerfile",
    "Makefile": "makefile",
    "Jenkinsfile": "groovy",
}


def detect_language(filename: str) -> str:
    """Detect programming language from a file name.

    Args:
        filename: Path of the file within the repository

    Returns:
        Language name, or "unknown"
    """
    path = PurePosixPath(filename)
    if path.name in SPECIAL_FILENAMES:
        return SPECIAL_FILENAMES[path.name]
    return LANGUAGE_EXTENSIONS.get(path.suffix.lower(), "unknown")


@dataclass(frozen=True)
class AnalyzerFinding:
    """A raw finding as reported by an analyzer.

    ``severity`` is one of error, warning or info. ``category`` may be left
    empty, in which case it is derived from the rule prefix.
    """

    rule: str
    message: str
    severity: str = "warning"
    line: int = 1
    column: int = 1
    category: str = ""
    auto_fixable: bool = False


@dataclass
class AnalysisReport:
    """Analyzer output for one file."""

    findings: list[AnalyzerFinding] = field(default_factory=list)


class MetricsAnalyzer(Protocol):
    """Interface of the external per-file metrics analyzer.

    Implementations may be sync or async.
    """

    def analyze(
        self, content: str, language: str
    ) -> AnalysisReport | Awaitable[AnalysisReport]: ...


_SECRET_RE = re.compile(
    r"""(password|passwd|secret|api_?key|token)\s*[:=]\s*['"][^'"]{4,}['"]""",
    re.IGNORECASE,
)
_EVAL_RE = re.compile(r"\b(eval|exec)\s*\(")
_SQL_CONCAT_RE = re.compile(
    r"""(execute|query)\s*\(\s*(f['"]|['"][^'"]*['"]\s*(\+|%))""",
    re.IGNORECASE,
)
_DEBUG_OUTPUT = {
    "python": re.compile(r"^\s*print\("),
    "javascript": re.compile(r"\bconsole\.log\("),
    "typescript": re.compile(r"\bconsole\.log\("),
}
_BARE_EXCEPT_RE = re.compile(r"^\s*except\s*:")
_TODO_RE = re.compile(r"\b(TODO|FIXME|XXX)\b")


class HeuristicAnalyzer:
    """Line-based analyzer used when no external analyzer is configured."""

    def __init__(self, max_line_length: int = 120, max_indent_depth: int = 6):
        self.max_line_length = max_line_length
        self.max_indent_depth = max_indent_depth

    def analyze(self, content: str, language: str) -> AnalysisReport:
        findings: list[AnalyzerFinding] = []
        debug_re = _DEBUG_OUTPUT.get(language)

        for number, line in enumerate(content.splitlines(), start=1):
            stripped = line.rstrip()

            if _SECRET_RE.search(line):
                findings.append(
                    AnalyzerFinding(
                        rule="security/hardcoded-secret",
                        message="Possible hard-coded credential",
                        severity="error",
                        line=number,
                    )
                )
            if _EVAL_RE.search(line):
                findings.append(
                    AnalyzerFinding(
                        rule="security/dynamic-eval",
                        message="Dynamic code evaluation",
                        severity="error",
                        line=number,
                    )
                )
            if _SQL_CONCAT_RE.search(line):
                findings.append(
                    AnalyzerFinding(
                        rule="security/sql-injection",
                        message="SQL built from string formatting",
                        severity="error",
                        line=number,
                    )
                )
            if language == "python" and _BARE_EXCEPT_RE.match(line):
                findings.append(
                    AnalyzerFinding(
                        rule="syntax/bare-except",
                        message="Bare except clause catches everything",
                        severity="warning",
                        line=number,
                        auto_fixable=True,
                    )
                )
            if debug_re is not None and debug_re.search(line):
                findings.append(
                    AnalyzerFinding(
                        rule="style/debug-output",
                        message="Debug output left in code",
                        severity="warning",
                        line=number,
                        auto_fixable=True,
                    )
                )
            if len(stripped) > self.max_line_length:
                findings.append(
                    AnalyzerFinding(
                        rule="style/line-length",
                        message=f"Line exceeds {self.max_line_length} characters",
                        severity="info",
                        line=number,
                        column=self.max_line_length + 1,
                    )
                )
            if stripped != line:
                findings.append(
                    AnalyzerFinding(
                        rule="style/trailing-whitespace",
                        message="Trailing whitespace",
                        severity="info",
                        line=number,
                        column=len(stripped) + 1,
                        auto_fixable=True,
                    )
                )
            if _TODO_RE.search(line):
                findings.append(
                    AnalyzerFinding(
                        rule="style/todo",
                        message="Unresolved TODO marker",
                        severity="info",
                        line=number,
                    )
                )

            indent = len(line) - len(line.lstrip(" "))
            if stripped and indent // 4 > self.max_indent_depth:
                findings.append(
                    AnalyzerFinding(
                        rule="complexity/deep-nesting",
                        message="Deeply nested block",
                        severity="warning",
                        line=number,
                        column=indent + 1,
                    )
                )

        return AnalysisReport(findings=findings)
