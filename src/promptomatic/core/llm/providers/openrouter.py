"""OpenRouter provider (OpenAI-compatible chat completions)."""

from __future__ import annotations

import json
import time
from typing import Any

import openai

from promptomatic.core.llm.errors import TransientServiceError, UpstreamTimeoutError
from promptomatic.core.llm.provider import ProviderResponse, UpstreamStatusError


class OpenRouterProvider:
    """Chat-completions provider using the OpenAI SDK against a custom base URL.

    SDK-level retries are disabled: retry and fallback policy belongs to
    the completion client.
    """

    def __init__(
        self,
        base_url: str = "https://openrouter.ai/api/v1",
        app_url: str = "",
        app_title: str = "",
    ) -> None:
        self.base_url = base_url
        self._headers: dict[str, str] = {}
        if app_url:
            self._headers["HTTP-Referer"] = app_url
        if app_title:
            self._headers["X-Title"] = app_title
        self._clients: dict[str, openai.AsyncOpenAI] = {}

    def _client_for(self, api_key: str) -> openai.AsyncOpenAI:
        client = self._clients.get(api_key)
        if client is None:
            client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=self.base_url,
                max_retries=0,
                default_headers=self._headers or None,
            )
            self._clients[api_key] = client
        return client

    async def send(
        self,
        *,
        api_key: str,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> ProviderResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start = time.monotonic()
        try:
            response = await self._client_for(api_key).chat.completions.create(**kwargs)
        except openai.APITimeoutError as exc:
            raise UpstreamTimeoutError("AI request timed out. Please try again.") from exc
        except openai.APIConnectionError as exc:
            raise TransientServiceError(
                "Could not reach the AI service. Please try again."
            ) from exc
        except openai.APIStatusError as exc:
            raise UpstreamStatusError(exc.status_code, _error_body(exc)) from exc
        elapsed_ms = (time.monotonic() - start) * 1000

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content or "") if choice and choice.message else ""
        usage = response.usage
        return ProviderResponse(
            content=content,
            finish_reason=choice.finish_reason if choice else None,
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=elapsed_ms,
        )


def _error_body(exc: openai.APIStatusError) -> str:
    """Best-effort text of a vendor-defined error body."""
    body = exc.body
    if isinstance(body, (dict, list)):
        return json.dumps(body)
    if isinstance(body, str) and body:
        return body
    try:
        return exc.response.text
    except Exception:  # noqa: BLE001 - streamed or already-closed response
        return exc.message
