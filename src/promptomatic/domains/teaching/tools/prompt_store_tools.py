"""MCP tools for the prompt store and teacher profiles.

Saved prompts are the terminal artifact of a conversation. A refinement
only replaces a saved prompt's blocks once the teacher accepts it. Every
tool acts on the calling teacher's own prompts only.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from promptomatic.core.storage.repository import RepositoryError
from promptomatic.domains.teaching.domain_logic.models import (
    LANGUAGES,
    AssembledPrompt,
    TeacherProfile,
    parse_blocks,
    render_prompt,
    str_list,
)
from promptomatic.domains.teaching.tools.interview_tools import (
    DEFAULT_TEACHER_ID,
    STORAGE_ERROR,
    STORAGE_ERROR_MESSAGE,
)

if TYPE_CHECKING:
    from promptomatic.core.storage.repository import PromptRepository

logger = logging.getLogger(__name__)


def _error(message: str, error_type: str = "validation_error") -> str:
    return json.dumps({"status": "error", "error_type": error_type, "message": message})


def _not_found(prompt_id: str) -> str:
    return json.dumps({"status": "not_found", "prompt_id": prompt_id})


def register_prompt_store_tools(
    mcp: FastMCP,
    repository: PromptRepository,
) -> None:
    """Register prompt store and teacher profile tools on the MCP server."""

    @mcp.tool
    async def save_prompt(
        ctx: Context,
        prompt: dict[str, Any],
        language: str = "fr",
        original_text: str = "",
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Save an assembled prompt to the prompt store.

        Args:
            prompt: The 'prompt' object returned by assemble_prompt.
            language: Language the prompt was generated in, 'fr' or 'en'.
            original_text: The teacher's original request.
            teacher_id: Owner of the prompt.
        """
        if language not in LANGUAGES:
            return _error(f"language must be one of: {' | '.join(LANGUAGES)}")
        assembled = AssembledPrompt.from_dict(prompt)
        if not assembled.blocks:
            return _error("The prompt has no usable blocks.")

        prompt_id = repository.save_assembled(
            assembled,
            teacher_id=teacher_id,
            language=language,
            original_text=original_text,
        )
        return json.dumps({
            "status": "saved",
            "prompt_id": prompt_id,
            "name": assembled.name,
            "block_count": len(assembled.blocks),
        })

    @mcp.tool
    async def get_prompt(
        ctx: Context,
        prompt_id: str,
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Fetch a saved prompt with its blocks and rendered text.

        Args:
            prompt_id: ID returned by save_prompt.
            teacher_id: Owner of the prompt.
        """
        stored = repository.get_prompt(prompt_id, teacher_id)
        if stored is None:
            return _not_found(prompt_id)
        data = stored.to_dict()
        data["rendered"] = render_prompt(stored.blocks)
        return json.dumps({"status": "ok", "prompt": data}, ensure_ascii=False, indent=2)

    @mcp.tool
    async def list_prompts(
        ctx: Context,
        teacher_id: str = DEFAULT_TEACHER_ID,
        limit: int = 50,
    ) -> str:
        """List a teacher's saved prompts, most recently updated first.

        Args:
            teacher_id: Owner of the prompts.
            limit: Maximum number of prompts to return (1-200).
        """
        limit = min(max(limit, 1), 200)
        prompts = repository.list_prompts(teacher_id, limit=limit)
        return json.dumps({
            "status": "ok",
            "count": len(prompts),
            "prompts": [p.summary() for p in prompts],
        }, ensure_ascii=False, indent=2)

    @mcp.tool
    async def update_prompt(
        ctx: Context,
        prompt_id: str,
        teacher_id: str = DEFAULT_TEACHER_ID,
        name: str | None = None,
        tags: list[str] | None = None,
        blocks: list[dict[str, Any]] | None = None,
    ) -> str:
        """Edit a saved prompt: rename it, re-tag it or replace its blocks.

        Only the arguments given are changed.

        Args:
            prompt_id: ID of the prompt to edit.
            teacher_id: Owner of the prompt.
            name: New name.
            tags: New tag list (replaces the old one).
            blocks: New block list (replaces the old one).
        """
        parsed = None
        if blocks is not None:
            parsed = parse_blocks(blocks)
            if not parsed:
                return _error("The new block list has no usable blocks.")
        if repository.get_prompt(prompt_id, teacher_id) is None:
            return _not_found(prompt_id)

        try:
            stored = repository.update_prompt(
                prompt_id,
                teacher_id=teacher_id,
                name=name,
                tags=str_list(tags) if tags is not None else None,
                blocks=parsed,
            )
        except RepositoryError as exc:
            return _error(str(exc))

        data = stored.to_dict()
        data["rendered"] = render_prompt(stored.blocks)
        return json.dumps({"status": "updated", "prompt": data}, ensure_ascii=False, indent=2)

    @mcp.tool
    async def delete_prompt(
        ctx: Context,
        prompt_id: str,
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Permanently delete a saved prompt.

        Args:
            prompt_id: ID of the prompt to delete.
            teacher_id: Owner of the prompt.
        """
        deleted = repository.delete_prompt(prompt_id, teacher_id=teacher_id)
        return json.dumps({
            "status": "deleted" if deleted else "not_found",
            "prompt_id": prompt_id,
        })

    @mcp.tool
    async def accept_refinement(
        ctx: Context,
        prompt_id: str,
        blocks: list[dict[str, Any]],
        tips: list[str] | None = None,
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Store a refinement proposed by refine_prompt on a saved prompt.

        Args:
            prompt_id: ID of the refined prompt.
            blocks: The 'blocks' list returned by refine_prompt.
            tips: The 'tips' list returned by refine_prompt (optional).
            teacher_id: Owner of the prompt.
        """
        parsed = parse_blocks(blocks)
        if not parsed:
            return _error("The refinement has no usable blocks.")
        if repository.get_prompt(prompt_id, teacher_id) is None:
            return _not_found(prompt_id)

        stored = repository.update_prompt(
            prompt_id,
            teacher_id=teacher_id,
            blocks=parsed,
            tips=str_list(tips) if tips is not None else None,
        )
        return json.dumps({
            "status": "updated",
            "prompt_id": prompt_id,
            "block_count": len(stored.blocks),
            "rendered": render_prompt(stored.blocks),
        }, ensure_ascii=False, indent=2)

    @mcp.tool
    async def get_teacher_profile(ctx: Context, teacher_id: str = DEFAULT_TEACHER_ID) -> str:
        """Fetch the teacher profile used to infer sensible defaults.

        Args:
            teacher_id: Whose profile to fetch.
        """
        try:
            profile = repository.get_profile(teacher_id)
        except RepositoryError as exc:
            logger.error("Unreadable profile for %s: %s", teacher_id, exc)
            return _error(STORAGE_ERROR_MESSAGE, STORAGE_ERROR)
        if profile is None:
            return json.dumps({"status": "not_found", "teacher_id": teacher_id})
        return json.dumps(
            {"status": "ok", "teacher_id": teacher_id, "profile": profile.to_dict()},
            ensure_ascii=False,
        )

    @mcp.tool
    async def save_teacher_profile(
        ctx: Context,
        teacher_id: str = DEFAULT_TEACHER_ID,
        languages_taught: list[str] | None = None,
        typical_levels: list[str] | None = None,
        typical_audience: list[str] | None = None,
        typical_duration: str = "",
        teaching_context: str = "",
    ) -> str:
        """Save the teacher profile. Unset fields are cleared.

        Args:
            teacher_id: Whose profile to save.
            languages_taught: Languages the teacher teaches (e.g., ['French', 'Spanish']).
            typical_levels: Usual learner levels (e.g., ['A2', 'B1']).
            typical_audience: Usual learners (e.g., ['adults', 'professionals']).
            typical_duration: Usual activity length (e.g., '45 minutes').
            teaching_context: Free-text description of where and how they teach.
        """
        profile = TeacherProfile.from_dict({
            "languages_taught": languages_taught or [],
            "typical_levels": typical_levels or [],
            "typical_audience": typical_audience or [],
            "typical_duration": typical_duration,
            "teaching_context": teaching_context,
        })
        repository.save_profile(teacher_id, profile)
        return json.dumps(
            {"status": "saved", "teacher_id": teacher_id, "profile": profile.to_dict()},
            ensure_ascii=False,
        )
