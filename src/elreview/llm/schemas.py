"""Pydantic schemas for AI findings.

Responses are requested as JSON arrays and validated item by item, so one
malformed entry does not discard the rest.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator


Severity = Literal["low", "medium", "high", "critical"]


class _Finding(BaseModel):
    severity: Severity = Field(default="medium", description="low, medium, high or critical")
    title: str = Field(description="Short title of the finding")
    description: str = Field(default="", description="What is wrong and why")
    line: int | None = Field(default=None, description="Line number if applicable")

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("low", "medium", "high", "critical"):
                return value
        return "medium"


class SecurityFinding(_Finding):
    """A security vulnerability reported by the AI pass."""

    cwe: str | None = Field(default=None, description="CWE identifier, e.g. CWE-89")
    recommendation: str = Field(default="", description="How to remediate")


class PerformanceFinding(_Finding):
    """A performance problem reported by the AI pass."""

    impact: str = Field(default="", description="Expected runtime impact")
    recommendation: str = Field(default="", description="How to improve")


class FixProposal(BaseModel):
    """A proposed code change for an auto-fixable suggestion."""

    fixed_code: str = Field(description="Replacement code for the affected snippet")
    explanation: str = Field(default="", description="Brief explanation of the fix")
