"""LLM abstraction layer for elreview using LangChain."""

from elreview.llm.provider import LLMProvider, Message, LLMResponse
from elreview.llm.factory import get_provider, LLMConfigError
from elreview.llm.schemas import SecurityFinding, PerformanceFinding, FixProposal

__all__ = [
    # Provider
    "LLMProvider",
    "Message",
    "LLMResponse",
    # Factory
    "get_provider",
    "LLMConfigError",
    # Schemas
    "SecurityFinding",
    "PerformanceFinding",
    "FixProposal",
]
