"""Resilient completion client: timeouts, model fallback, JSON recovery.

The client knows nothing about prompt semantics. It turns one
:class:`ChatRequest` into one parsed JSON object, walking a primary/fallback
model chain and recovering from providers that reject the JSON response
mode or wrap their JSON in prose.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from promptomatic.core.llm.errors import (
    ConfigError,
    EmptyResponseError,
    EngineError,
    TransientServiceError,
    TruncatedResponseError,
    UpstreamTimeoutError,
    classify_status,
    is_json_mode_rejection,
    is_retryable,
)
from promptomatic.core.llm.json_payload import parse_json_object
from promptomatic.core.llm.provider import (
    ChatRequest,
    LLMProvider,
    ModelsConfig,
    ProviderResponse,
    UpstreamStatusError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_REASONING_TIMEOUT_S = 90.0
DEFAULT_REASONING_MARKERS = ("/o1", "/o3", "/o4", "-r1", "reasoning", "thinking")


def build_model_chain(primary: str, fallback: str | None) -> list[str]:
    """``[primary]`` when the fallback is unset or identical, else ``[primary, fallback]``."""
    if not fallback or fallback == primary:
        return [primary]
    return [primary, fallback]


async def walk_model_chain(
    models: Sequence[str],
    attempt: Callable[[str], Awaitable[T]],
    *,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run ``attempt`` against each model in order until one succeeds.

    Non-retryable errors abort the chain immediately. When every entry
    fails with a retryable error, the last one is raised.
    """
    last_error: EngineError | None = None
    for index, model in enumerate(models):
        try:
            return await attempt(model)
        except EngineError as exc:
            if not should_retry(exc):
                raise
            last_error = exc
            if index + 1 < len(models):
                logger.warning(
                    "Model %s failed (%s); falling back to %s",
                    model,
                    exc.error_type,
                    models[index + 1],
                )
    if last_error is None:
        raise TransientServiceError("No model available for this request.")
    raise last_error


class CompletionClient:
    """Sends chat requests upstream and returns one parsed JSON object."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        api_key: str,
        primary_model: str = DEFAULT_MODEL,
        fallback_model: str = "",
        timeout_s: float = DEFAULT_TIMEOUT_S,
        reasoning_timeout_s: float = DEFAULT_REASONING_TIMEOUT_S,
        reasoning_markers: Sequence[str] = DEFAULT_REASONING_MARKERS,
    ) -> None:
        self.provider = provider
        self._api_key = api_key
        self.primary_model = primary_model
        self.fallback_model = fallback_model
        self.timeout_s = timeout_s
        self.reasoning_timeout_s = reasoning_timeout_s
        self.reasoning_markers = tuple(m.lower() for m in reasoning_markers)

    def timeout_for(self, model: str) -> float:
        """Per-attempt timeout; reasoning-capable models get the larger budget."""
        lowered = model.lower()
        if any(marker in lowered for marker in self.reasoning_markers):
            return self.reasoning_timeout_s
        return self.timeout_s

    def model_chain(self, request: ChatRequest, models: ModelsConfig | None = None) -> list[str]:
        models = models or ModelsConfig()
        primary = request.model or models.primary or self.primary_model
        fallback = models.fallback if models.fallback is not None else self.fallback_model
        return build_model_chain(primary, fallback)

    async def complete(
        self,
        request: ChatRequest,
        models: ModelsConfig | None = None,
    ) -> dict[str, Any]:
        """Run ``request`` through the model chain and return the parsed object.

        Raises:
            ConfigError: No API key is configured.
            RateLimitedError: The upstream answered 429.
            RequestRejectedError: The upstream refused the request (4xx).
            TransientServiceError: Every model in the chain failed retryably.
        """
        if not self._api_key:
            raise ConfigError("The AI service is not configured (missing API key).")

        chain = self.model_chain(request, models)
        return await walk_model_chain(chain, lambda model: self._complete_on(model, request))

    async def _complete_on(self, model: str, request: ChatRequest) -> dict[str, Any]:
        """One model: JSON mode first, plain mode if the provider rejects it."""
        try:
            response = await self._send(model, request, json_mode=True)
        except UpstreamStatusError as exc:
            if not is_json_mode_rejection(exc.status_code, exc.body):
                raise classify_status(exc.status_code, exc.body) from exc
            logger.warning(
                "Model %s rejected JSON response mode (HTTP %d); retrying without it",
                model,
                exc.status_code,
            )
            try:
                response = await self._send(model, request, json_mode=False)
            except UpstreamStatusError as retry_exc:
                raise classify_status(retry_exc.status_code, retry_exc.body) from retry_exc

        return _extract_object(response)

    async def _send(self, model: str, request: ChatRequest, *, json_mode: bool) -> ProviderResponse:
        timeout = self.timeout_for(model)
        try:
            response = await asyncio.wait_for(
                self.provider.send(
                    api_key=self._api_key,
                    model=model,
                    messages=[m.to_dict() for m in request.messages],
                    temperature=request.temperature,
                    max_tokens=request.max_tokens,
                    json_mode=json_mode,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Model %s timed out after %.0fs", model, timeout)
            raise UpstreamTimeoutError("AI request timed out. Please try again.") from exc

        logger.info(
            "LLM call: model=%s, json_mode=%s, finish=%s, tokens=%d+%d, latency=%.0fms",
            response.model,
            json_mode,
            response.finish_reason,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
        )
        return response


def _extract_object(response: ProviderResponse) -> dict[str, Any]:
    content = response.content or ""
    if not content.strip():
        if response.finish_reason == "length":
            raise TruncatedResponseError(
                "The AI ran out of room before answering. Please try again."
            )
        raise EmptyResponseError("Empty response from AI.")
    return parse_json_object(content)
