"""MCP tools for the interview turns: analyze, ask, assemble, refine.

Each tool runs one engine turn and returns a JSON string. Engine,
validation and storage failures come back as ``{"status": "error", ...}``
payloads with the user-facing message, never as raw exceptions. Every turn is
recorded in the turn audit log when one is configured.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastmcp import Context, FastMCP

from promptomatic.core.llm.errors import EngineError, ValidationError
from promptomatic.core.storage.repository import RepositoryError
from promptomatic.domains.teaching.domain_logic.conversation import TooManyRoundsError
from promptomatic.domains.teaching.domain_logic.models import (
    IntentAnalysis,
    TeacherProfile,
    parse_blocks,
    render_prompt,
)

if TYPE_CHECKING:
    from promptomatic.core.audit.logger import TurnAuditLogger
    from promptomatic.core.storage.repository import PromptRepository
    from promptomatic.domains.teaching.domain_logic.interview import InterviewEngine

logger = logging.getLogger(__name__)

DEFAULT_TEACHER_ID = "default"
STORAGE_ERROR = "storage_error"
STORAGE_ERROR_MESSAGE = "Saved data could not be read. Please try again later."


def register_interview_tools(
    mcp: FastMCP,
    engine: InterviewEngine,
    repository: PromptRepository | None = None,
    audit_logger: TurnAuditLogger | None = None,
    max_clarification_rounds: int = 3,
) -> None:
    """Register the interview turn tools on the MCP server.

    ``max_clarification_rounds`` caps how many question rounds a client may
    report through ``assemble_prompt`` before an ``ask_user`` reply is
    turned into an error (0 disables the cap).
    """

    def _profile(teacher_id: str) -> TeacherProfile | None:
        if repository is None:
            return None
        return repository.get_profile(teacher_id)

    def _failed(
        stage: str,
        turn_input: dict[str, Any],
        teacher_id: str,
        language: str,
        start_time: float,
        error_type: str,
        error: dict[str, str],
    ) -> str:
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.warning("Tool turn %s failed: %s", stage, error_type)
        if audit_logger is not None:
            audit_logger.log_turn(
                stage,
                turn_input,
                teacher_id=teacher_id,
                language=language,
                duration_ms=elapsed_ms,
                status="failure",
                error_type=error_type,
            )
        return json.dumps(error)

    async def _run_turn(
        stage: str,
        turn_input: dict[str, Any],
        teacher_id: str,
        language: str,
        turn: Callable[[], Awaitable[dict[str, Any]]],
    ) -> str:
        start_time = time.monotonic()
        try:
            payload = await turn()
        except (EngineError, ValidationError) as exc:
            return _failed(stage, turn_input, teacher_id, language, start_time, exc.error_type, exc.to_dict())
        except RepositoryError as exc:
            logger.error("Storage failure during %s turn: %s", stage, exc)
            error = {"status": "error", "error_type": STORAGE_ERROR, "message": STORAGE_ERROR_MESSAGE}
            return _failed(stage, turn_input, teacher_id, language, start_time, STORAGE_ERROR, error)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        if audit_logger is not None:
            audit_logger.log_turn(
                stage,
                turn_input,
                teacher_id=teacher_id,
                language=language,
                duration_ms=elapsed_ms,
            )
        return json.dumps({"status": "ok", **payload}, ensure_ascii=False, indent=2)

    @mcp.tool
    async def analyze_intent(
        ctx: Context,
        text: str,
        language: str = "fr",
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Read a teacher's free-text request into structured intent.

        Args:
            text: What the teacher wants, in their own words (10+ characters).
            language: Output language, 'fr' or 'en'.
            teacher_id: Whose saved profile to use for defaults.
        """

        async def turn() -> dict[str, Any]:
            intent = await engine.analyze_intent(text, language, _profile(teacher_id))
            return {"intent": intent.to_dict()}

        return await _run_turn("analyze", {"text": text}, teacher_id, language, turn)

    @mcp.tool
    async def generate_questions(
        ctx: Context,
        intent: dict[str, Any],
        language: str = "fr",
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Generate clarification questions for the intent's missing fields.

        Returns an empty list when nothing is missing.

        Args:
            intent: The intent object returned by analyze_intent.
            language: Output language, 'fr' or 'en'.
            teacher_id: Whose saved profile to use for defaults.
        """

        async def turn() -> dict[str, Any]:
            parsed = IntentAnalysis.from_dict(intent)
            questions = await engine.generate_questions(parsed, language, _profile(teacher_id))
            return {"questions": [q.to_dict() for q in questions]}

        return await _run_turn("questions", {"intent": intent}, teacher_id, language, turn)

    @mcp.tool
    async def assemble_prompt(
        ctx: Context,
        intent: dict[str, Any],
        original_text: str,
        answers: dict[str, str] | None = None,
        clarification_rounds: int = 0,
        language: str = "fr",
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Assemble the structured teaching prompt, or ask for more details.

        The result has kind 'prompt' (with blocks, tips and the rendered
        prompt text) or kind 'ask_user' (with 1-3 more questions).

        Args:
            intent: The intent object returned by analyze_intent.
            original_text: The teacher's original request.
            answers: Answers so far, keyed by question field.
            clarification_rounds: Question rounds already shown to the teacher.
            language: Output language, 'fr' or 'en'.
            teacher_id: Whose saved profile to use for defaults.
        """

        async def turn() -> dict[str, Any]:
            result = await engine.assemble(
                IntentAnalysis.from_dict(intent),
                answers or {},
                original_text,
                language,
                _profile(teacher_id),
            )
            if (
                result.kind == "ask_user"
                and max_clarification_rounds
                and clarification_rounds >= max_clarification_rounds
            ):
                raise TooManyRoundsError()
            payload = result.to_dict()
            if result.prompt is not None:
                payload["rendered"] = render_prompt(result.prompt.blocks)
            return payload

        return await _run_turn(
            "assemble",
            {"intent": intent, "answers": answers or {}, "text": original_text},
            teacher_id,
            language,
            turn,
        )

    @mcp.tool
    async def refine_prompt(
        ctx: Context,
        issue_type: str,
        prompt_id: str = "",
        blocks: list[dict[str, Any]] | None = None,
        description: str = "",
        output_sample: str = "",
        language: str = "fr",
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Propose a refined version of a prompt that addresses a reported issue.

        The refinement is a proposal: call accept_refinement to store it.

        Args:
            issue_type: too_complex, too_simple, wrong_format, off_topic or other.
            prompt_id: ID of one of the teacher's saved prompts to refine.
            blocks: Prompt blocks to refine when no prompt_id is given.
            description: The teacher's own description of the problem.
            output_sample: A sample of the unsatisfying output.
            language: Output language, 'fr' or 'en'.
            teacher_id: Whose saved profile to use for defaults.
        """

        async def turn() -> dict[str, Any]:
            if prompt_id:
                if repository is None:
                    raise ValidationError("Prompt storage is not available.")
                stored = repository.get_prompt(prompt_id, teacher_id)
                if stored is None:
                    raise ValidationError(f"No saved prompt with id {prompt_id}.")
                current = stored.blocks
            else:
                current = parse_blocks(blocks or [])

            refined = await engine.refine(
                current,
                issue_type,
                language,
                description=description or None,
                output_sample=output_sample or None,
                profile=_profile(teacher_id),
            )
            payload = refined.to_dict()
            payload["rendered"] = render_prompt(refined.blocks)
            if prompt_id:
                payload["prompt_id"] = prompt_id
            return payload

        return await _run_turn(
            "refine",
            {"prompt_id": prompt_id, "blocks": blocks or [], "issue_type": issue_type},
            teacher_id,
            language,
            turn,
        )
