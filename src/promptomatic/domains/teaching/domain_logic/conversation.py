"""Conversation state machine for the interview flow.

Steps: ``input -> analyzing -> questions -> assembling -> done | error``,
with a fast path ``analyzing -> assembling`` when nothing is missing, a
re-entrant edge ``assembling -> questions`` when the assembler asks for
more, and ``reset`` from any step back to ``input``.

State is an immutable :class:`ConversationState`; transitions are pure
functions returning a new state, so the flow (including the re-entrant
``ask_user`` edge and the force-re-answer rule) is testable without any
I/O. :class:`Conversation` is the async driver that pairs each transition
with the matching :class:`InterviewEngine` turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Literal

from promptomatic.core.llm.errors import EngineError
from promptomatic.domains.teaching.domain_logic.interview import (
    InterviewEngine,
    validate_request_text,
)
from promptomatic.domains.teaching.domain_logic.models import (
    AssembledPrompt,
    AssembleResult,
    IntentAnalysis,
    Question,
    TeacherProfile,
)

logger = logging.getLogger(__name__)

Step = Literal["input", "analyzing", "questions", "assembling", "done", "error"]

TOO_MANY_ROUNDS_MESSAGE = (
    "The assistant keeps asking for more details. "
    "Please start over with a more detailed request."
)


class ConversationError(Exception):
    """Base class for conversation misuse (not upstream failures)."""


class InvalidTransitionError(ConversationError):
    """A transition was requested from a step that does not allow it."""


class ConversationBusyError(ConversationError):
    """A turn is already in flight for this conversation."""


class TooManyRoundsError(EngineError):
    """The assembler kept asking past the clarification round limit."""

    error_type = "too_many_rounds"

    def __init__(self, message: str = TOO_MANY_ROUNDS_MESSAGE) -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ConversationState:
    """Everything one end-user session carries between turns."""

    step: Step = "input"
    original_text: str = ""
    intent: IntentAnalysis | None = None
    questions: tuple[Question, ...] = ()
    answers: dict[str, str] = field(default_factory=dict)
    result: AssembledPrompt | None = None
    error: str | None = None
    clarification_rounds: int = 0

    @property
    def pending_fields(self) -> list[str]:
        """Fields of the active questions that still need an answer."""
        return [q.field for q in self.questions if q.field not in self.answers]

    @property
    def ready_to_assemble(self) -> bool:
        return self.step == "questions" and bool(self.questions) and not self.pending_fields


def _expect(state: ConversationState, *steps: Step) -> None:
    if state.step not in steps:
        raise InvalidTransitionError(
            f"Cannot do this while the conversation is in step '{state.step}'"
        )


def _without_fields(answers: dict[str, str], questions: tuple[Question, ...]) -> dict[str, str]:
    """Force re-answer: drop prior answers for every field asked again."""
    asked = {q.field for q in questions}
    return {k: v for k, v in answers.items() if k not in asked}


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------

def submit_text(state: ConversationState, text: str) -> ConversationState:
    """input -> analyzing."""
    _expect(state, "input")
    return ConversationState(step="analyzing", original_text=text)


def intent_analyzed(state: ConversationState, intent: IntentAnalysis) -> ConversationState:
    """Record the intent; go straight to assembling when nothing is missing."""
    _expect(state, "analyzing")
    if not intent.missing_fields:
        return replace(state, intent=intent, step="assembling", answers={})
    return replace(state, intent=intent)


def questions_received(state: ConversationState, questions: list[Question]) -> ConversationState:
    """analyzing -> questions, or assembling -> questions when the assembler asks again."""
    _expect(state, "analyzing", "assembling")
    active = tuple(questions)
    return replace(
        state,
        step="questions",
        questions=active,
        answers=_without_fields(state.answers, active),
        clarification_rounds=state.clarification_rounds + 1,
    )


def answer_question(state: ConversationState, field_name: str, value: str) -> ConversationState:
    """Record one answer. Multi-select values arrive pre-joined with ", "."""
    _expect(state, "questions")
    if field_name not in {q.field for q in state.questions}:
        raise InvalidTransitionError(f"No active question about '{field_name}'")
    return replace(state, answers={**state.answers, field_name: value})


def begin_assembly(state: ConversationState) -> ConversationState:
    """questions -> assembling, once every active question is answered."""
    _expect(state, "questions")
    if state.pending_fields:
        raise InvalidTransitionError(
            f"Unanswered questions: {', '.join(state.pending_fields)}"
        )
    if state.intent is None:
        raise InvalidTransitionError("There is no analyzed request to assemble")
    return replace(state, step="assembling")


def assembly_completed(state: ConversationState, result: AssembleResult) -> ConversationState:
    """assembling -> done, or back to questions on ``ask_user``."""
    _expect(state, "assembling")
    if result.kind == "prompt" and result.prompt is not None:
        return replace(state, step="done", result=result.prompt)
    return questions_received(state, result.questions)


def fail(state: ConversationState, message: str) -> ConversationState:
    """Any in-flight step -> error, keeping the failing turn's message intact."""
    return replace(state, step="error", error=message)


def reset() -> ConversationState:
    return ConversationState()


# ---------------------------------------------------------------------------
# Async driver
# ---------------------------------------------------------------------------

class Conversation:
    """Drives one interview through the engine, one turn at a time.

    Only one turn may be in flight; a second call while one is pending
    raises :class:`ConversationBusyError` instead of queueing.

    Usage::

        conversation = Conversation(engine, language="fr")
        await conversation.submit_text("Je veux un exercice de grammaire pour des B1")
        while conversation.state.step == "questions":
            for q in conversation.state.questions:
                conversation.answer_question(q.field, pick(q))
            await conversation.submit_answers()
    """

    def __init__(
        self,
        engine: InterviewEngine,
        language: str,
        profile: TeacherProfile | None = None,
        max_clarification_rounds: int = 3,
    ) -> None:
        self.engine = engine
        self.language = language
        self.profile = profile
        self.max_clarification_rounds = max_clarification_rounds
        self._state = ConversationState()
        self._busy = False

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    def _enter(self) -> None:
        if self._busy:
            raise ConversationBusyError("A request is already in progress for this conversation")
        self._busy = True

    async def submit_text(self, text: str) -> ConversationState:
        """Analyze the request, then either ask questions or assemble directly.

        Raises ValidationError (state unchanged) when the text is too short.
        """
        cleaned = validate_request_text(text)
        self._enter()
        try:
            self._state = submit_text(self._state, cleaned)
            intent = await self.engine.analyze_intent(cleaned, self.language, self.profile)
            self._state = intent_analyzed(self._state, intent)

            if self._state.step == "assembling":
                await self._assemble()
                return self._state

            questions = await self.engine.generate_questions(intent, self.language, self.profile)
            self._state = questions_received(self._state, questions)
        except EngineError as exc:
            self._state = fail(self._state, exc.message)
        finally:
            self._busy = False
        return self._state

    def answer_question(self, field_name: str, value: str) -> ConversationState:
        self._state = answer_question(self._state, field_name, value)
        return self._state

    async def submit_answers(self) -> ConversationState:
        """Assemble with the accumulated answers once every question is answered."""
        self._enter()
        try:
            self._state = begin_assembly(self._state)
            await self._assemble()
        except EngineError as exc:
            self._state = fail(self._state, exc.message)
        finally:
            self._busy = False
        return self._state

    def reset(self) -> ConversationState:
        self._enter()
        try:
            self._state = reset()
        finally:
            self._busy = False
        return self._state

    def _round_limit_reached(self) -> bool:
        cap = self.max_clarification_rounds
        return bool(cap) and self._state.clarification_rounds >= cap

    async def _assemble(self) -> None:
        state = self._state
        if state.intent is None:
            raise InvalidTransitionError("There is no analyzed request to assemble")
        result = await self.engine.assemble(
            state.intent,
            dict(state.answers),
            state.original_text,
            self.language,
            self.profile,
        )
        if result.kind == "ask_user" and self._round_limit_reached():
            logger.warning(
                "Clarification round limit (%d) reached", self.max_clarification_rounds
            )
            self._state = fail(self._state, TOO_MANY_ROUNDS_MESSAGE)
            return

        self._state = assembly_completed(self._state, result)
        if self._state.step == "done":
            logger.info(
                "Conversation assembled a prompt after %d question round(s)",
                self._state.clarification_rounds,
            )
