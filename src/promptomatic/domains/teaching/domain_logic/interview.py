"""Turn executors of the interview pipeline.

Each turn builds one system/user message pair, makes one completion call
and normalizes the reply into a domain object. A turn that fails with a
retryable engine error is attempted exactly once more at a lower
temperature (same model chain, same timeout) before the error surfaces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from promptomatic.core.llm.client import CompletionClient
from promptomatic.core.llm.errors import (
    EngineError,
    MalformedJsonError,
    ValidationError,
    is_retryable,
)
from promptomatic.core.llm.provider import ChatMessage, ChatRequest, ModelsConfig
from promptomatic.domains.teaching.domain_logic.models import (
    INTENT_FIELDS,
    ISSUE_TYPES,
    LANGUAGES,
    MIN_REQUEST_LENGTH,
    AssembledPrompt,
    AssembleResult,
    IntentAnalysis,
    PromptBlock,
    Question,
    RefinedPrompt,
    TeacherProfile,
)
from promptomatic.domains.teaching.domain_logic.questions import normalize_questions
from promptomatic.domains.teaching.domain_logic.refinement import reconcile_refinement
from promptomatic.domains.teaching.prompts import templates

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_QUESTIONS = 6
MAX_ASK_USER_QUESTIONS = 3


@dataclass(frozen=True)
class StageSettings:
    """Decoding parameters for one turn."""

    temperature: float
    retry_temperature: float
    max_tokens: int


STAGES: dict[str, StageSettings] = {
    "analyze": StageSettings(temperature=0.3, retry_temperature=0.1, max_tokens=1024),
    "questions": StageSettings(temperature=0.7, retry_temperature=0.3, max_tokens=1536),
    "assemble": StageSettings(temperature=0.7, retry_temperature=0.3, max_tokens=4096),
    "refine": StageSettings(temperature=0.5, retry_temperature=0.2, max_tokens=4096),
}


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

def parse_questions(raw: dict[str, Any], allowed_fields: tuple[str, ...]) -> list[Question]:
    questions = normalize_questions(raw.get("questions"), allowed_fields=allowed_fields)
    if not questions:
        raise MalformedJsonError("AI returned no usable questions.")
    return questions[:MAX_QUESTIONS]


def parse_assemble_result(raw: dict[str, Any]) -> AssembleResult:
    """Read the assembler's tagged reply.

    A reply without a recognizable ``kind`` is still accepted as a prompt
    when it carries a ``blocks`` list (directly or under ``prompt``).
    Anything else is malformed.
    """
    kind = raw.get("kind")

    if kind == "ask_user":
        questions = normalize_questions(raw.get("questions"), allowed_fields=INTENT_FIELDS)
        if not questions:
            raise MalformedJsonError("AI asked for more details but sent no usable question.")
        return AssembleResult.of_questions(questions[:MAX_ASK_USER_QUESTIONS])

    nested = raw.get("prompt")
    if isinstance(nested, dict) and isinstance(nested.get("blocks"), list):
        payload = nested
    elif isinstance(raw.get("blocks"), list):
        payload = raw
    else:
        raise MalformedJsonError("AI returned an unrecognized assembly result.")

    if kind not in (None, "prompt"):
        logger.warning("Unknown assembly kind %r; treating reply as a prompt", kind)

    prompt = AssembledPrompt.from_dict(payload)
    if not prompt.blocks:
        raise MalformedJsonError("AI returned a prompt without usable blocks.")
    return AssembleResult.of_prompt(prompt)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def _check_language(language: str) -> None:
    if language not in LANGUAGES:
        raise ValidationError(f"language must be one of: {' | '.join(LANGUAGES)}")


def validate_request_text(text: str) -> str:
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_REQUEST_LENGTH:
        raise ValidationError(
            f"Please describe what you need in at least {MIN_REQUEST_LENGTH} characters."
        )
    return cleaned


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class InterviewEngine:
    """Intent analysis, question generation, assembly and refinement turns.

    Stateless between calls: conversation state belongs to the caller
    (see ``conversation.Conversation``).
    """

    def __init__(self, client: CompletionClient, models: ModelsConfig | None = None) -> None:
        self.client = client
        self.models = models

    async def _run_turn(
        self,
        stage: str,
        system_message: str,
        user_message: str,
        parse: Callable[[dict[str, Any]], T],
    ) -> T:
        settings = STAGES[stage]
        messages = (
            ChatMessage(role="system", content=system_message),
            ChatMessage(role="user", content=user_message),
        )

        async def attempt(temperature: float) -> T:
            request = ChatRequest(
                messages=messages,
                temperature=temperature,
                max_tokens=settings.max_tokens,
            )
            raw = await self.client.complete(request, self.models)
            return parse(raw)

        try:
            return await attempt(settings.temperature)
        except EngineError as exc:
            if not is_retryable(exc):
                raise
            logger.warning(
                "Turn %s failed (%s); retrying once at temperature %.1f",
                stage,
                exc.error_type,
                settings.retry_temperature,
            )

        try:
            return await attempt(settings.retry_temperature)
        except EngineError as exc:
            logger.error("Turn %s failed after retry: %s", stage, exc.error_type)
            raise

    async def analyze_intent(
        self,
        text: str,
        language: str,
        profile: TeacherProfile | None = None,
    ) -> IntentAnalysis:
        """Extract an :class:`IntentAnalysis` from the teacher's free text."""
        cleaned = validate_request_text(text)
        _check_language(language)
        return await self._run_turn(
            "analyze",
            templates.intent_analysis_prompt(language),
            templates.intent_user_message(cleaned, profile),
            IntentAnalysis.from_dict,
        )

    async def generate_questions(
        self,
        intent: IntentAnalysis,
        language: str,
        profile: TeacherProfile | None = None,
    ) -> list[Question]:
        """Clarification questions for the intent's missing fields.

        Returns ``[]`` without calling upstream when nothing is missing.
        """
        _check_language(language)
        if not intent.missing_fields:
            return []
        return await self._run_turn(
            "questions",
            templates.questions_prompt(language),
            templates.questions_user_message(intent, profile),
            lambda raw: parse_questions(raw, intent.missing_fields),
        )

    async def assemble(
        self,
        intent: IntentAnalysis,
        answers: dict[str, str],
        original_text: str,
        language: str,
        profile: TeacherProfile | None = None,
    ) -> AssembleResult:
        """Assemble the prompt, or ask for more answers."""
        _check_language(language)
        if not (original_text or "").strip():
            raise ValidationError("The original request text is required.")
        clean_answers = {str(k): str(v) for k, v in (answers or {}).items()}
        return await self._run_turn(
            "assemble",
            templates.assembly_prompt(language),
            templates.assembly_user_message(intent, clean_answers, original_text, profile),
            parse_assemble_result,
        )

    async def refine(
        self,
        current_blocks: list[PromptBlock],
        issue_type: str,
        language: str,
        description: str | None = None,
        output_sample: str | None = None,
        profile: TeacherProfile | None = None,
    ) -> RefinedPrompt:
        """Rewrite the blocks of a stored prompt to address a reported issue."""
        _check_language(language)
        if not current_blocks:
            raise ValidationError("There are no prompt blocks to refine.")
        if issue_type not in ISSUE_TYPES:
            raise ValidationError(f"issue_type must be one of: {' | '.join(ISSUE_TYPES)}")

        def parse(raw: dict[str, Any]) -> RefinedPrompt:
            refined = reconcile_refinement(current_blocks, raw)
            if not refined.blocks:
                raise MalformedJsonError("AI returned a refinement without usable blocks.")
            return refined

        return await self._run_turn(
            "refine",
            templates.refinement_prompt(language),
            templates.refinement_user_message(
                current_blocks, issue_type, description, output_sample, profile
            ),
            parse,
        )

