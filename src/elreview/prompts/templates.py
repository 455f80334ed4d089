"""Prompt templates for the review pipeline."""

# =============================================================================
# SECURITY ANALYSIS PROMPT
# =============================================================================

SECURITY_ANALYSIS_PROMPT = """Analyze the following {language} code for security vulnerabilities.

File: {filename}
Code:
```{language}
{content}
```

Identify injection flaws, unsafe deserialization, hard-coded secrets, missing
authorization checks, path traversal and similar issues.

Respond with a JSON array only. Each element must have these fields:
- severity: 'low', 'medium', 'high' or 'critical'
- title: short title
- description: what is wrong and how it can be exploited
- line: line number, if applicable
- cwe: CWE identifier such as 'CWE-89', if known
- recommendation: how to remediate

If there are no issues, respond with []."""


# =============================================================================
# PERFORMANCE ANALYSIS PROMPT
# =============================================================================

PERFORMANCE_ANALYSIS_PROMPT = """Analyze the following {language} code for performance issues.

File: {filename}
Code:
```{language}
{content}
```

Look for quadratic loops, repeated I/O inside loops, blocking calls in async
code, unbounded memory growth and redundant computation.

Respond with a JSON array only. Each element must have these fields:
- severity: 'low', 'medium', 'high' or 'critical'
- title: short title
- description: what is slow and why
- line: line number, if applicable
- impact: expected runtime impact
- recommendation: how to improve

If there are no issues, respond with []."""


# =============================================================================
# AUTO-FIX PROMPT
# =============================================================================

AUTO_FIX_PROMPT = """Propose a minimal fix for this review finding.

File: {filename}
Line: {line}
Finding: {title}
{description}

Code:
```{language}
{content}
```

Return only the replacement code for the affected lines and a one sentence
explanation. Do not refactor unrelated code."""
