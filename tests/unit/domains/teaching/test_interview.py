"""Tests for the interview turn executors."""

from __future__ import annotations

import asyncio
import json

import pytest

from promptomatic.core.llm.errors import (
    MalformedJsonError,
    RateLimitedError,
    ValidationError,
)
from promptomatic.core.llm.provider import UpstreamStatusError
from promptomatic.domains.teaching.domain_logic.interview import (
    MAX_QUESTIONS,
    STAGES,
    parse_assemble_result,
)
from promptomatic.domains.teaching.domain_logic.models import (
    IntentAnalysis,
    PromptBlock,
    TeacherProfile,
)

REQUEST = "A restaurant roleplay for my adult B1 class, about 30 minutes."


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# analyze_intent
# ---------------------------------------------------------------------------

class TestAnalyzeIntent:
    def test_parses_reply_with_stage_settings(self, engine, mock_provider, intent_reply):
        mock_provider.queue(intent_reply(missing_fields=["audience"]))
        intent = _run(engine.analyze_intent(REQUEST, "fr"))

        assert intent.level == "B1"
        assert intent.missing_fields == ("audience",)
        call = mock_provider.last_call
        assert call.temperature == STAGES["analyze"].temperature
        assert call.max_tokens == STAGES["analyze"].max_tokens
        assert json.loads(call.user_message) == {"teacher_request": REQUEST}
        assert "idiomatic French" in call.system_message

    def test_short_text_never_reaches_upstream(self, engine, mock_provider):
        with pytest.raises(ValidationError):
            _run(engine.analyze_intent("   hi    ", "fr"))
        assert mock_provider.call_count == 0

    def test_unknown_language_is_rejected(self, engine, mock_provider):
        with pytest.raises(ValidationError):
            _run(engine.analyze_intent(REQUEST, "de"))
        assert mock_provider.call_count == 0

    def test_retries_once_at_lower_temperature(self, engine, mock_provider, intent_reply):
        mock_provider.queue("this is not json", intent_reply())
        intent = _run(engine.analyze_intent(REQUEST, "en"))

        assert intent.topic == "ordering food at a restaurant"
        assert [c.temperature for c in mock_provider.calls] == [
            STAGES["analyze"].temperature,
            STAGES["analyze"].retry_temperature,
        ]

    def test_second_failure_surfaces(self, engine, mock_provider):
        mock_provider.queue("nope", "still nope", "never used")
        with pytest.raises(MalformedJsonError):
            _run(engine.analyze_intent(REQUEST, "en"))
        assert mock_provider.call_count == 2

    def test_rate_limit_is_not_retried(self, engine, mock_provider, intent_reply):
        mock_provider.queue(UpstreamStatusError(429, "slow down"), intent_reply())
        with pytest.raises(RateLimitedError):
            _run(engine.analyze_intent(REQUEST, "en"))
        assert mock_provider.call_count == 1

    def test_profile_is_appended_to_user_message(self, engine, mock_provider, intent_reply):
        mock_provider.queue(intent_reply())
        profile = TeacherProfile(typical_levels=["B1"], typical_audience=["adults"])
        _run(engine.analyze_intent(REQUEST, "en", profile))
        assert "Typical levels: B1" in mock_provider.last_call.user_message


# ---------------------------------------------------------------------------
# generate_questions
# ---------------------------------------------------------------------------

class TestGenerateQuestions:
    def test_nothing_missing_makes_no_call(self, engine, mock_provider):
        questions = _run(engine.generate_questions(IntentAnalysis(level="B1"), "fr"))
        assert questions == []
        assert mock_provider.call_count == 0

    def test_keeps_only_missing_fields(self, engine, mock_provider, questions_reply):
        mock_provider.queue(questions_reply("audience", "level", "duration"))
        intent = IntentAnalysis(missing_fields=("audience", "duration"))
        questions = _run(engine.generate_questions(intent, "fr"))
        assert [q.field for q in questions] == ["audience", "duration"]

    def test_caps_question_count(self, engine, mock_provider):
        fields = ["level", "topic", "activity_type", "audience", "duration"]
        raw = {"questions": [
            {"question": f"Q{i}?", "field": fields[i % 5]} for i in range(10)
        ]}
        mock_provider.queue(raw)
        intent = IntentAnalysis(missing_fields=tuple(fields))
        questions = _run(engine.generate_questions(intent, "en"))
        assert len(questions) <= MAX_QUESTIONS

    def test_no_usable_question_is_malformed(self, engine, mock_provider):
        mock_provider.queue({"questions": []}, {"questions": "none"})
        with pytest.raises(MalformedJsonError):
            _run(engine.generate_questions(IntentAnalysis(missing_fields=("topic",)), "en"))
        assert mock_provider.call_count == 2


# ---------------------------------------------------------------------------
# assemble
# ---------------------------------------------------------------------------

class TestAssemble:
    def test_prompt_result(self, engine, mock_provider, prompt_reply):
        mock_provider.queue(prompt_reply())
        result = _run(engine.assemble(IntentAnalysis(level="B1"), {"audience": "adults"},
                                      REQUEST, "en"))
        assert result.kind == "prompt"
        assert [b.technique for b in result.prompt.blocks] == ["role", "context", "constraints"]
        payload = json.loads(mock_provider.last_call.user_message)
        assert payload["answers"] == {"audience": "adults"}
        assert payload["teacher_request"] == REQUEST
        assert mock_provider.last_call.max_tokens == STAGES["assemble"].max_tokens

    def test_ask_user_result_is_capped(self, engine, mock_provider, ask_user_reply):
        mock_provider.queue(ask_user_reply("level", "topic", "audience", "duration"))
        result = _run(engine.assemble(IntentAnalysis(), {}, REQUEST, "fr"))
        assert result.kind == "ask_user"
        assert [q.field for q in result.questions] == ["level", "topic", "audience"]

    def test_empty_original_text_is_rejected(self, engine, mock_provider):
        with pytest.raises(ValidationError):
            _run(engine.assemble(IntentAnalysis(), {}, "  ", "fr"))
        assert mock_provider.call_count == 0


class TestParseAssembleResult:
    def test_kindless_reply_with_blocks_is_a_prompt(self, prompt_reply):
        raw = prompt_reply()["prompt"]
        result = parse_assemble_result(raw)
        assert result.kind == "prompt"
        assert result.prompt.name == "Restaurant roleplay"

    def test_unknown_kind_with_nested_prompt_is_a_prompt(self, prompt_reply):
        raw = {**prompt_reply(), "kind": "final"}
        assert parse_assemble_result(raw).kind == "prompt"

    def test_kindless_reply_without_blocks_is_malformed(self):
        with pytest.raises(MalformedJsonError):
            parse_assemble_result({"name": "Nothing here"})

    def test_prompt_without_usable_blocks_is_malformed(self):
        with pytest.raises(MalformedJsonError):
            parse_assemble_result({"kind": "prompt", "prompt": {
                "name": "x", "blocks": [{"technique": "magic", "content": "?"}],
            }})

    def test_ask_user_without_questions_is_malformed(self):
        with pytest.raises(MalformedJsonError):
            parse_assemble_result({"kind": "ask_user", "questions": []})

    def test_ask_user_accepts_legacy_questions(self):
        result = parse_assemble_result({"kind": "ask_user", "questions": [
            {"question": "Which level?", "field": "level", "options": ["A2", "B1"],
             "allow_freetext": True},
        ]})
        question = result.questions[0]
        assert question.id == "q1"
        assert question.options[1].value == "B1"
        assert question.allow_other is True


# ---------------------------------------------------------------------------
# refine
# ---------------------------------------------------------------------------

_BLOCKS = [
    PromptBlock("role", "You are a tutor.", "Persona.", 1),
    PromptBlock("context", "Learners are B2.", "Level.", 2),
]


class TestRefine:
    def test_refines_and_reconciles(self, engine, mock_provider):
        mock_provider.queue({
            "blocks": [
                _BLOCKS[0].to_dict(),
                {**_BLOCKS[1].to_dict(), "content": "Learners are A2.", "annotation": "Lower."},
            ],
            "changes": [{"technique": "context", "type": "modified", "reason": "Too complex."}],
            "tips": ["Shorter sentences help."],
        })
        refined = _run(engine.refine(_BLOCKS, "too_complex", "en",
                                     description="Students were lost",
                                     output_sample="Subjunctive everywhere"))
        assert refined.blocks[0] == _BLOCKS[0]
        assert [(c.technique, c.type) for c in refined.changes] == [("context", "modified")]

        payload = json.loads(mock_provider.last_call.user_message)
        assert payload["issue_type"] == "too_complex"
        assert payload["teacher_description"] == "Students were lost"
        assert payload["poor_output_sample"] == "Subjunctive everywhere"

    def test_no_blocks_is_rejected(self, engine, mock_provider):
        with pytest.raises(ValidationError):
            _run(engine.refine([], "too_simple", "en"))
        assert mock_provider.call_count == 0

    def test_unknown_issue_type_is_rejected(self, engine, mock_provider):
        with pytest.raises(ValidationError):
            _run(engine.refine(_BLOCKS, "too_boring", "en"))
        assert mock_provider.call_count == 0

    def test_reply_without_blocks_is_retried_then_malformed(self, engine, mock_provider):
        mock_provider.queue({"blocks": []}, {"changes": []})
        with pytest.raises(MalformedJsonError):
            _run(engine.refine(_BLOCKS, "other", "en"))
        assert [c.temperature for c in mock_provider.calls] == [
            STAGES["refine"].temperature,
            STAGES["refine"].retry_temperature,
        ]
