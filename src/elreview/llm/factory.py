"""Build the review AI backend from explicit configuration.

Nothing here reads the environment; ``build_orchestrator`` passes the values
held by ``Settings`` (``llm_provider``, ``llm_model``, ``llm_api_url`` and the
provider's API key).
"""

from typing import Callable, Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from elreview.llm.provider import LLMProvider


ProviderType = Literal["claude", "openai"]

DEFAULT_MODELS: dict[str, str] = {
    "claude": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
}

# Anthropic requires max_tokens on every request
DEFAULT_CLAUDE_MAX_TOKENS = 2048


class LLMConfigError(Exception):
    """Raised when LLM configuration is invalid."""


def _openai_model(
    api_key: str,
    model: str,
    api_url: str | None,
    temperature: float,
    max_tokens: int | None,
) -> BaseChatModel:
    kwargs: dict = {"api_key": api_key, "model": model, "temperature": temperature}
    if api_url:
        kwargs["base_url"] = api_url
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    return ChatOpenAI(**kwargs)


def _claude_model(
    api_key: str,
    model: str,
    api_url: str | None,
    temperature: float,
    max_tokens: int | None,
) -> BaseChatModel:
    kwargs: dict = {
        "api_key": api_key,
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens or DEFAULT_CLAUDE_MAX_TOKENS,
    }
    if api_url:
        kwargs["base_url"] = api_url
    return ChatAnthropic(**kwargs)


_BUILDERS: dict[str, tuple[str, Callable[..., BaseChatModel]]] = {
    "claude": ("Anthropic", _claude_model),
    "openai": ("OpenAI", _openai_model),
}


def get_provider(
    provider_name: ProviderType,
    api_key: str | None,
    model: str | None = None,
    api_url: str | None = None,
    temperature: float = 0.2,
    max_tokens: int | None = None,
) -> LLMProvider:
    """Create the LLMProvider for a configured backend.

    Args:
        provider_name: 'claude' or 'openai'
        api_key: Key for that provider; required
        model: Model name; the provider default when empty
        api_url: Alternative base URL (proxies, self-hosted gateways)
        temperature: Default sampling temperature
        max_tokens: Default completion limit

    Raises:
        LLMConfigError: On an unknown provider or a missing key
    """
    if provider_name not in _BUILDERS:
        raise LLMConfigError(
            f"Unknown provider: {provider_name}. Supported: {', '.join(sorted(_BUILDERS))}"
        )
    label, build = _BUILDERS[provider_name]
    if not api_key:
        raise LLMConfigError(f"{label} API key not configured for provider '{provider_name}'")

    model = model or DEFAULT_MODELS[provider_name]
    chat_model = build(api_key, model, api_url or None, temperature, max_tokens)
    return LLMProvider(model=chat_model, model_name=model)
