"""LLM provider abstraction using LangChain."""

from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_langchain(self) -> BaseMessage:
        """Convert to LangChain message format."""
        if self.role == "system":
            return SystemMessage(content=self.content)
        elif self.role == "assistant":
            return AIMessage(content=self.content)
        else:
            return HumanMessage(content=self.content)


@dataclass
class LLMResponse:
    """Response from an LLM provider."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    raw_response: Any = None


def _content_text(content: Any) -> str:
    # Anthropic models may return a list of content blocks
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class LLMProvider:
    """LLM provider wrapper using LangChain."""

    def __init__(
        self,
        model: BaseChatModel,
        model_name: str = "unknown",
    ):
        """Initialize the provider.

        Args:
            model: LangChain chat model instance
            model_name: Name of the model for logging
        """
        self.model = model
        self.model_name = model_name

    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        stop: list[str] | None = None,
    ) -> LLMResponse:
        """Generate a completion from the LLM.

        Args:
            messages: List of messages in the conversation
            temperature: Sampling temperature (0.0 to 1.0)
            max_tokens: Maximum tokens in the response
            stop: Stop sequences

        Returns:
            LLMResponse with the generated content
        """
        langchain_messages = [msg.to_langchain() for msg in messages]

        model = self.model
        bind_kwargs: dict[str, Any] = {}
        if temperature is not None:
            bind_kwargs["temperature"] = temperature
        if max_tokens is not None:
            bind_kwargs["max_tokens"] = max_tokens
        if bind_kwargs:
            model = model.bind(**bind_kwargs)

        kwargs: dict[str, Any] = {}
        if stop:
            kwargs["stop"] = stop

        response = await model.ainvoke(langchain_messages, **kwargs)

        usage = {}
        if hasattr(response, "usage_metadata") and response.usage_metadata:
            usage = {
                "prompt_tokens": response.usage_metadata.get("input_tokens", 0),
                "completion_tokens": response.usage_metadata.get("output_tokens", 0),
                "total_tokens": response.usage_metadata.get("total_tokens", 0),
            }

        return LLMResponse(
            content=_content_text(response.content),
            model=self.model_name,
            usage=usage,
            raw_response=response,
        )

    async def generate(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Single-prompt completion used by the review pipeline."""
        return await self.complete(
            [Message(role="user", content=prompt)],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def complete_structured(
        self,
        messages: list[Message],
        output_schema: type[BaseModel],
    ) -> BaseModel:
        """Generate a structured output from the LLM.

        Args:
            messages: List of messages in the conversation
            output_schema: Pydantic model for structured output

        Returns:
            Parsed Pydantic model instance
        """
        langchain_messages = [msg.to_langchain() for msg in messages]

        structured_model = self.model.with_structured_output(output_schema)
        return await structured_model.ainvoke(langchain_messages)
