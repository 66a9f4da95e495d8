"""Tests for the conversation state machine and its async driver."""

from __future__ import annotations

import asyncio
import json

import pytest

from promptomatic.core.llm.client import CompletionClient
from promptomatic.core.llm.errors import ValidationError
from promptomatic.core.llm.provider import ProviderResponse, UpstreamStatusError
from promptomatic.domains.teaching.domain_logic import conversation as conv
from promptomatic.domains.teaching.domain_logic.conversation import (
    TOO_MANY_ROUNDS_MESSAGE,
    Conversation,
    ConversationBusyError,
    ConversationState,
    InvalidTransitionError,
)
from promptomatic.domains.teaching.domain_logic.interview import InterviewEngine
from promptomatic.domains.teaching.domain_logic.models import IntentAnalysis, Question
from promptomatic.domains.teaching.prompts.templates import assembly_prompt

REQUEST = "Je veux un jeu de rôle au restaurant pour mes adultes B1."


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _answer_all(conversation: Conversation) -> None:
    for question in conversation.state.questions:
        conversation.answer_question(question.field, question.options[0].value)


def _assembly_requests(mock_provider, language: str) -> list[dict]:
    """User payloads of every call made with the assembly system prompt."""
    system = assembly_prompt(language)
    return [
        json.loads(call.user_message)
        for call in mock_provider.calls
        if call.system_message == system
    ]


# ---------------------------------------------------------------------------
# End-to-end flows
# ---------------------------------------------------------------------------

def test_complete_request_skips_questions(engine, mock_provider, intent_reply, prompt_reply):
    mock_provider.queue(intent_reply(), prompt_reply())
    conversation = Conversation(engine, language="fr")

    state = _run(conversation.submit_text(REQUEST))

    assert state.step == "done"
    assert state.result.name == "Restaurant roleplay"
    assert state.clarification_rounds == 0
    assert mock_provider.call_count == 2


def test_missing_fields_go_through_questions(
    engine, mock_provider, intent_reply, questions_reply, prompt_reply
):
    mock_provider.queue(
        intent_reply(audience=None, missing_fields=["audience"]),
        questions_reply("audience"),
        prompt_reply(),
    )
    conversation = Conversation(engine, language="fr")

    state = _run(conversation.submit_text(REQUEST))
    assert state.step == "questions"
    assert state.pending_fields == ["audience"]

    conversation.answer_question("audience", "adults, professionals")
    assert conversation.state.ready_to_assemble

    state = _run(conversation.submit_answers())
    assert state.step == "done"
    assert mock_provider.call_count == 3
    assembled_with = json.loads(mock_provider.last_call.user_message)["answers"]
    assert assembled_with == {"audience": "adults, professionals"}


def test_ask_user_forces_re_answer(
    engine, mock_provider, intent_reply, questions_reply, ask_user_reply, prompt_reply
):
    mock_provider.queue(
        intent_reply(level=None, duration=None, missing_fields=["level", "duration"]),
        questions_reply("level", "duration"),
        ask_user_reply("level"),
        prompt_reply(),
    )
    conversation = Conversation(engine, language="en")

    _run(conversation.submit_text(REQUEST))
    conversation.answer_question("level", "B1")
    conversation.answer_question("duration", "30 minutes")
    state = _run(conversation.submit_answers())

    assert state.step == "questions"
    assert state.clarification_rounds == 2
    assert state.answers == {"duration": "30 minutes"}
    assert state.pending_fields == ["level"]

    conversation.answer_question("level", "A2")
    state = _run(conversation.submit_answers())
    assert state.step == "done"
    final_answers = json.loads(mock_provider.last_call.user_message)["answers"]
    assert final_answers == {"duration": "30 minutes", "level": "A2"}

    requests = _assembly_requests(mock_provider, "en")
    assert len(requests) == 2
    assert [r["teacher_request"] for r in requests] == [REQUEST, REQUEST]


def test_two_question_round_assembles_with_original_request(
    engine, mock_provider, intent_reply, questions_reply, prompt_reply
):
    mock_provider.queue(
        intent_reply(topic=None, audience=None, missing_fields=["topic", "audience"]),
        questions_reply("topic", "audience"),
        prompt_reply(),
    )
    conversation = Conversation(engine, language="fr")

    state = _run(conversation.submit_text(REQUEST))
    assert state.step == "questions"
    assert state.pending_fields == ["topic", "audience"]

    conversation.answer_question("topic", "ordering food")
    conversation.answer_question("audience", "adults")
    state = _run(conversation.submit_answers())

    assert state.step == "done"
    requests = _assembly_requests(mock_provider, "fr")
    assert len(requests) == 1
    assert requests[0]["teacher_request"] == REQUEST
    assert requests[0]["answers"] == {"topic": "ordering food", "audience": "adults"}


def test_round_limit_stops_endless_clarification(
    completion_client, mock_provider, intent_reply, questions_reply, ask_user_reply
):
    mock_provider.queue(
        intent_reply(topic=None, missing_fields=["topic"]),
        questions_reply("topic"),
        ask_user_reply("topic"),
        ask_user_reply("topic"),
    )
    conversation = Conversation(
        InterviewEngine(completion_client), language="en", max_clarification_rounds=2
    )

    _run(conversation.submit_text(REQUEST))
    _answer_all(conversation)
    assert _run(conversation.submit_answers()).step == "questions"
    _answer_all(conversation)
    state = _run(conversation.submit_answers())

    assert state.step == "error"
    assert state.error == TOO_MANY_ROUNDS_MESSAGE


def test_zero_round_limit_disables_the_cap(
    completion_client, mock_provider, intent_reply, ask_user_reply
):
    mock_provider.queue(intent_reply(), *[ask_user_reply("topic")] * 5)
    conversation = Conversation(
        InterviewEngine(completion_client), language="en", max_clarification_rounds=0
    )
    _run(conversation.submit_text(REQUEST))
    for _ in range(4):
        _answer_all(conversation)
        assert _run(conversation.submit_answers()).step == "questions"
    assert conversation.state.clarification_rounds == 5


def test_engine_failure_keeps_message_intact(engine, mock_provider):
    mock_provider.queue(UpstreamStatusError(429, "quota"))
    conversation = Conversation(engine, language="fr")

    state = _run(conversation.submit_text(REQUEST))

    assert state.step == "error"
    assert state.error == "Rate limit reached. Please wait a moment and try again."
    assert not conversation.busy


def test_validation_error_leaves_state_untouched(engine, mock_provider):
    conversation = Conversation(engine, language="fr")
    with pytest.raises(ValidationError):
        _run(conversation.submit_text("court"))
    assert conversation.state == ConversationState()
    assert mock_provider.call_count == 0


def test_reset_returns_to_input(engine, mock_provider, intent_reply, prompt_reply):
    mock_provider.queue(intent_reply(), prompt_reply())
    conversation = Conversation(engine, language="fr")
    _run(conversation.submit_text(REQUEST))

    assert conversation.reset() == ConversationState()


class _GatedProvider:
    """Holds every reply until ``gate`` is set."""

    def __init__(self, content: str) -> None:
        self.content = content
        self.gate = asyncio.Event()

    async def send(self, *, api_key, model, messages, temperature, max_tokens, json_mode):
        await self.gate.wait()
        return ProviderResponse(content=self.content, finish_reason="stop", model=model)


def test_second_submission_while_busy_is_refused(intent_reply):
    async def _check():
        provider = _GatedProvider(json.dumps(intent_reply(missing_fields=["topic"])))
        client = CompletionClient(provider, api_key="k", primary_model="m")
        conversation = Conversation(InterviewEngine(client), language="en")

        first = asyncio.ensure_future(conversation.submit_text(REQUEST))
        await asyncio.sleep(0)
        assert conversation.busy
        with pytest.raises(ConversationBusyError):
            await conversation.submit_text(REQUEST)
        with pytest.raises(ConversationBusyError):
            conversation.reset()

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert not conversation.busy

    _run(_check())


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------

_QUESTION = Question(id="q1", question="Level?", field="level")


class TestTransitions:
    def test_submit_text_only_from_input(self):
        state = conv.submit_text(ConversationState(), REQUEST)
        assert state.step == "analyzing"
        with pytest.raises(InvalidTransitionError):
            conv.submit_text(state, REQUEST)

    def test_intent_without_missing_fields_goes_to_assembling(self):
        state = conv.submit_text(ConversationState(), REQUEST)
        state = conv.intent_analyzed(state, IntentAnalysis(level="B1"))
        assert state.step == "assembling"

    def test_answer_for_unknown_field_is_refused(self):
        state = ConversationState(step="questions", questions=(_QUESTION,))
        with pytest.raises(InvalidTransitionError):
            conv.answer_question(state, "topic", "food")

    def test_begin_assembly_requires_all_answers(self):
        state = ConversationState(step="questions", questions=(_QUESTION,), intent=IntentAnalysis())
        with pytest.raises(InvalidTransitionError):
            conv.begin_assembly(state)
        state = conv.answer_question(state, "level", "B1")
        assert conv.begin_assembly(state).step == "assembling"

    def test_questions_received_drops_stale_answers(self):
        state = ConversationState(
            step="assembling",
            answers={"level": "B1", "topic": "food"},
            clarification_rounds=1,
        )
        state = conv.questions_received(state, [_QUESTION])
        assert state.answers == {"topic": "food"}
        assert state.clarification_rounds == 2

    def test_fail_keeps_message(self):
        state = conv.fail(ConversationState(step="analyzing"), "AI request timed out.")
        assert (state.step, state.error) == ("error", "AI request timed out.")

    def test_begin_assembly_without_intent_is_refused(self):
        state = ConversationState(step="questions")
        with pytest.raises(InvalidTransitionError):
            conv.begin_assembly(state)


def test_submit_answers_without_intent_is_refused(engine, mock_provider):
    conversation = Conversation(engine, language="fr")
    conversation._state = ConversationState(step="questions")

    with pytest.raises(InvalidTransitionError):
        _run(conversation.submit_answers())
    assert not conversation.busy
    assert mock_provider.call_count == 0
