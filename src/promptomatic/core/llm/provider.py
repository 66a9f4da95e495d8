"""LLM provider protocol: transport-level interface for chat completions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """One chat message. Built fresh for every call."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """A single completion request, independent of the model it runs on."""

    messages: tuple[ChatMessage, ...]
    temperature: float = 0.7
    max_tokens: int = 2048
    model: str | None = None


@dataclass
class ModelsConfig:
    """Primary/fallback model pair. Unset entries use the client defaults."""

    primary: str | None = None
    fallback: str | None = None


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str
    finish_reason: str | None
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0


class UpstreamStatusError(Exception):
    """The upstream answered with a non-2xx status.

    Raised by providers; turned into engine errors by the completion client.
    """

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"upstream returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


@runtime_checkable
class LLMProvider(Protocol):
    """Abstract interface for upstream chat-completion calls."""

    async def send(
        self,
        *,
        api_key: str,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> ProviderResponse: ...


def create_provider(
    provider_name: str,
    base_url: str = "",
    app_url: str = "",
    app_title: str = "",
) -> LLMProvider:
    """Factory function to create an LLM provider by name.

    Args:
        provider_name: "openrouter" or "mock"
        base_url: OpenAI-compatible API root.
        app_url: Attribution URL sent as ``HTTP-Referer``.
        app_title: Attribution title sent as ``X-Title``.

    Returns:
        An LLMProvider instance.
    """
    if provider_name == "openrouter":
        from promptomatic.core.llm.providers.openrouter import OpenRouterProvider

        return OpenRouterProvider(
            base_url=base_url or "https://openrouter.ai/api/v1",
            app_url=app_url,
            app_title=app_title,
        )
    elif provider_name == "mock":
        from promptomatic.core.llm.providers.mock import MockProvider

        return MockProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
