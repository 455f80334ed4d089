"""Markdown rendering of review results for platform comments."""

from collections import defaultdict

from elreview.review.models import ReviewResult, Severity, Suggestion


SEVERITY_EMOJI = {
    Severity.CRITICAL: "🚨",
    Severity.HIGH: "⚠️",
    Severity.MEDIUM: "💡",
    Severity.LOW: "ℹ️",
}

_SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]

# Items listed per section before collapsing into "... and N more"
SECTION_LIMIT = 3


def _listing(lines: list[str], total: int) -> str:
    text = "\n".join(lines[:SECTION_LIMIT]) + "\n"
    if total > SECTION_LIMIT:
        text += f"- ... and {total - SECTION_LIMIT} more\n"
    return text


def format_review_comment(
    result: ReviewResult, outside_diff: list[Suggestion] | None = None
) -> str:
    """Render the consolidated summary comment.

    ``outside_diff`` lists high/critical findings on lines the platform will
    not accept a review comment on; they are spelled out here instead.
    """
    overall = result.overall
    comment = "## 🤖 AI Code Review\n\n"
    comment += f"**Overall Score:** {overall.score}/100 - {overall.status.value.upper()}\n\n"
    comment += f"**Summary:** {overall.summary}\n\n"

    if result.suggestions:
        comment += f"### 📝 Suggestions ({len(result.suggestions)})\n\n"
        grouped: dict[Severity, list[Suggestion]] = defaultdict(list)
        for suggestion in result.suggestions:
            grouped[suggestion.severity].append(suggestion)

        for severity in _SEVERITY_ORDER:
            items = grouped.get(severity)
            if not items:
                continue
            comment += f"**{severity.value.upper()}** ({len(items)})\n"
            comment += _listing([f"- {s.title}: {s.description}" for s in items], len(items))
            comment += "\n"

    for heading, issues in (
        ("🔒 Security Issues", result.security_issues),
        ("⚡ Performance Issues", result.performance_issues),
    ):
        if issues:
            comment += f"### {heading} ({len(issues)})\n\n"
            comment += _listing(
                [f"- **{i.severity.value.upper()}**: {i.title}" for i in issues], len(issues)
            )
            comment += "\n"

    if outside_diff:
        comment += f"### 📍 Findings Outside the Diff ({len(outside_diff)})\n\n"
        for s in outside_diff:
            emoji = SEVERITY_EMOJI.get(s.severity, "📝")
            comment += f"- {emoji} `{s.file}:{s.line}` **{s.title}**: {s.description}\n"
        comment += "\n"

    coverage = result.test_coverage
    comment += "### 🧪 Test Coverage\n\n"
    comment += f"- **Overall Coverage:** {coverage.overall}%\n"
    comment += f"- **Threshold Met:** {'✅' if coverage.meets_threshold else '❌'}\n\n"

    if result.failed_files:
        comment += "### ❗ Not Analyzed\n\n"
        comment += "".join(f"- `{name}`\n" for name in result.failed_files)
        comment += "\n"

    comment += "---\n"
    comment += (
        f"*Reviewed {result.metrics.total_files} file(s) "
        f"in {result.metrics.review_time:.1f}s*\n"
    )
    if result.metrics.human_review_recommended:
        comment += "⚠️ **Human review recommended** due to complexity or low file scores\n"

    return comment


def format_suggestion_comment(suggestion: Suggestion) -> str:
    """Render a line comment for a single suggestion."""
    emoji = SEVERITY_EMOJI.get(suggestion.severity, "📝")
    comment = f"## {emoji} {suggestion.title}\n\n"
    comment += (
        f"**Type:** {suggestion.type.value} | **Severity:** {suggestion.severity.value} "
        f"| **Confidence:** {round(suggestion.confidence * 100)}%\n\n"
    )
    comment += f"{suggestion.description}\n\n"
    if suggestion.fix:
        comment += f"**Suggestion:**\n```\n{suggestion.fix}\n```\n\n"
    if suggestion.auto_fixable:
        comment += "🔧 This issue can be auto-fixed\n"
    return comment


def format_auto_fix_comment(fixes: list[tuple[Suggestion, str]]) -> str:
    """Render the comment listing applied auto-fixes."""
    comment = "## 🤖 Auto-fixes Applied\n\n"
    for suggestion, fixed_code in fixes:
        location = f"`{suggestion.file}:{suggestion.line}`" if suggestion.line else f"`{suggestion.file}`"
        comment += (
            f"- {location} {suggestion.description} "
            f"({round(suggestion.confidence * 100)}% confidence)\n"
        )
        comment += f"```\n{fixed_code}\n```\n"
    comment += f"\nTotal fixes applied: {len(fixes)}\n"
    return comment
