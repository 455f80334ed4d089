"""Prompt templates for elreview."""

from elreview.prompts.templates import (
    SECURITY_ANALYSIS_PROMPT,
    PERFORMANCE_ANALYSIS_PROMPT,
    AUTO_FIX_PROMPT,
)

__all__ = [
    "SECURITY_ANALYSIS_PROMPT",
    "PERFORMANCE_ANALYSIS_PROMPT",
    "AUTO_FIX_PROMPT",
]
