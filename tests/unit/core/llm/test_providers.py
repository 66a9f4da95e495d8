"""Tests for the OpenRouter and mock providers."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from promptomatic.core.llm.errors import TransientServiceError, UpstreamTimeoutError
from promptomatic.core.llm.provider import (
    LLMProvider,
    ProviderResponse,
    UpstreamStatusError,
    create_provider,
)
from promptomatic.core.llm.providers import MockProvider, OpenRouterProvider

_REQUEST = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _send(provider, **overrides):
    kwargs = dict(
        api_key="sk-test",
        model="google/gemini-2.0-flash-001",
        messages=[{"role": "system", "content": "s"}, {"role": "user", "content": "u"}],
        temperature=0.3,
        max_tokens=256,
        json_mode=True,
    )
    kwargs.update(overrides)
    return await provider.send(**kwargs)


class _FakeCompletions:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs: dict | None = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _install_fake(provider: OpenRouterProvider, outcome) -> _FakeCompletions:
    completions = _FakeCompletions(outcome)
    provider._clients["sk-test"] = SimpleNamespace(
        chat=SimpleNamespace(completions=completions)
    )
    return completions


def _completion(content: str | None, finish_reason: str = "stop"):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=content),
                finish_reason=finish_reason,
            )
        ],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=7),
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def test_create_provider_builds_both_kinds():
    assert isinstance(create_provider("mock"), MockProvider)
    assert isinstance(create_provider("openrouter"), OpenRouterProvider)


def test_create_provider_rejects_unknown_name():
    with pytest.raises(ValueError, match="Unknown LLM provider"):
        create_provider("carrier-pigeon")


def test_providers_satisfy_protocol():
    assert isinstance(MockProvider(), LLMProvider)
    assert isinstance(OpenRouterProvider(), LLMProvider)


# ---------------------------------------------------------------------------
# OpenRouterProvider
# ---------------------------------------------------------------------------

class TestOpenRouterProvider:
    def test_json_mode_sets_response_format(self):
        provider = OpenRouterProvider()
        fake = _install_fake(provider, _completion('{"a": 1}'))
        response = _run(_send(provider))
        assert fake.kwargs["response_format"] == {"type": "json_object"}
        assert fake.kwargs["temperature"] == 0.3
        assert fake.kwargs["max_tokens"] == 256
        assert response.content == '{"a": 1}'
        assert response.finish_reason == "stop"
        assert response.input_tokens == 12
        assert response.output_tokens == 7

    def test_plain_mode_omits_response_format(self):
        provider = OpenRouterProvider()
        fake = _install_fake(provider, _completion("{}"))
        _run(_send(provider, json_mode=False))
        assert "response_format" not in fake.kwargs

    def test_null_content_becomes_empty_string(self):
        provider = OpenRouterProvider()
        _install_fake(provider, _completion(None, finish_reason="length"))
        response = _run(_send(provider))
        assert response.content == ""
        assert response.finish_reason == "length"

    def test_status_error_becomes_upstream_status_error(self):
        provider = OpenRouterProvider()
        error = openai.APIStatusError(
            "bad request",
            response=httpx.Response(400, request=_REQUEST),
            body={"error": {"message": "response_format is not supported"}},
        )
        _install_fake(provider, error)
        with pytest.raises(UpstreamStatusError) as info:
            _run(_send(provider))
        assert info.value.status_code == 400
        assert "response_format" in info.value.body

    def test_timeout_becomes_upstream_timeout(self):
        provider = OpenRouterProvider()
        _install_fake(provider, openai.APITimeoutError(request=_REQUEST))
        with pytest.raises(UpstreamTimeoutError):
            _run(_send(provider))

    def test_connection_error_is_transient(self):
        provider = OpenRouterProvider()
        _install_fake(provider, openai.APIConnectionError(request=_REQUEST))
        with pytest.raises(TransientServiceError):
            _run(_send(provider))

    def test_attribution_headers(self):
        provider = OpenRouterProvider(app_url="https://example.org", app_title="Promptomatic")
        client = provider._client_for("sk-other")
        assert client.default_headers["HTTP-Referer"] == "https://example.org"
        assert client.default_headers["X-Title"] == "Promptomatic"
        assert client.max_retries == 0

    def test_client_is_cached_per_key(self):
        provider = OpenRouterProvider()
        assert provider._client_for("k1") is provider._client_for("k1")
        assert provider._client_for("k1") is not provider._client_for("k2")


# ---------------------------------------------------------------------------
# MockProvider
# ---------------------------------------------------------------------------

class TestMockProvider:
    def test_replays_in_order_then_default(self):
        provider = MockProvider(['{"n": 1}', {"n": 2}], default_content='{"n": 0}')
        contents = [_run(_send(provider)).content for _ in range(3)]
        assert contents == ['{"n": 1}', '{"n": 2}', '{"n": 0}']
        assert provider.call_count == 3

    def test_raises_scripted_exception(self):
        provider = MockProvider([UpstreamStatusError(503, "down")])
        with pytest.raises(UpstreamStatusError):
            _run(_send(provider))
        assert provider.call_count == 1

    def test_callable_reply_sees_the_call(self):
        provider = MockProvider([lambda call: {"echo": call.user_message}])
        response = _run(_send(provider))
        assert response.content == '{"echo": "u"}'

    def test_provider_response_is_returned_verbatim(self):
        canned = ProviderResponse(content="", finish_reason="length", model="m")
        provider = MockProvider([canned])
        assert _run(_send(provider)) is canned

    def test_records_call_details(self):
        provider = MockProvider()
        _run(_send(provider, json_mode=False))
        call = provider.last_call
        assert call.system_message == "s"
        assert call.user_message == "u"
        assert call.json_mode is False
