"""LLM provider implementations."""

from promptomatic.core.llm.providers.mock import MockProvider
from promptomatic.core.llm.providers.openrouter import OpenRouterProvider

__all__ = ["MockProvider", "OpenRouterProvider"]
