"""Mock LLM provider for testing: replays a scripted queue of replies."""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable

from promptomatic.core.llm.provider import ProviderResponse


@dataclass
class MockCall:
    """One recorded ``send`` invocation."""

    api_key: str
    model: str
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int
    json_mode: bool

    @property
    def system_message(self) -> str:
        return next((m["content"] for m in self.messages if m["role"] == "system"), "")

    @property
    def user_message(self) -> str:
        return next((m["content"] for m in self.messages if m["role"] == "user"), "")


# A scripted reply is one of:
#   str               -> returned as content (finish_reason "stop")
#   dict / list       -> JSON-encoded and returned as content
#   ProviderResponse  -> returned verbatim
#   BaseException     -> raised
#   callable(call)    -> invoked, its result interpreted by the same rules
Reply = Any


class MockProvider:
    """Mock provider for testing: returns scripted replies in order.

    When the script runs dry, ``default_content`` is returned.
    """

    def __init__(
        self,
        replies: Iterable[Reply] = (),
        default_content: str = "{}",
    ) -> None:
        self._replies: deque[Reply] = deque(replies)
        self.default_content = default_content
        self.calls: list[MockCall] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def last_call(self) -> MockCall | None:
        return self.calls[-1] if self.calls else None

    def queue(self, *replies: Reply) -> None:
        self._replies.extend(replies)

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
        call = MockCall(
            api_key=api_key,
            model=model,
            messages=[dict(m) for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )
        self.calls.append(call)
        reply = self._replies.popleft() if self._replies else self.default_content
        return self._materialize(reply, call)

    def _materialize(self, reply: Reply, call: MockCall) -> ProviderResponse:
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, ProviderResponse):
            return reply
        if callable(reply):
            return self._materialize(reply(call), call)
        if isinstance(reply, (dict, list)):
            reply = json.dumps(reply)
        content = str(reply)
        return ProviderResponse(
            content=content,
            finish_reason="stop",
            model=call.model,
            input_tokens=sum(len(m["content"].split()) for m in call.messages),
            output_tokens=len(content.split()),
            latency_ms=0.0,
        )

