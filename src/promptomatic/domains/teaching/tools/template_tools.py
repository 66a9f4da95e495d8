"""MCP tools for the template library.

Templates are approved prompts shared with every teacher: official ones
published by an administrator and community ones submitted by teachers
and approved on review. Using a template clones it into the teacher's
own library, where it can be edited like any saved prompt.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from promptomatic.core.storage.repository import TEMPLATE_KINDS, RepositoryError
from promptomatic.domains.teaching.domain_logic.models import render_prompt
from promptomatic.domains.teaching.tools.interview_tools import DEFAULT_TEACHER_ID

if TYPE_CHECKING:
    from promptomatic.core.storage.repository import PromptRepository

logger = logging.getLogger(__name__)


def _error(message: str) -> str:
    return json.dumps({"status": "error", "error_type": "validation_error", "message": message})


def register_template_tools(
    mcp: FastMCP,
    repository: PromptRepository,
    moderation: bool = False,
) -> None:
    """Register template library tools; ``moderation`` adds the review tools."""

    @mcp.tool
    async def list_templates(ctx: Context, kind: str = "") -> str:
        """List approved templates, most recently updated first.

        Args:
            kind: 'official', 'community', or empty for both.
        """
        if kind and kind not in TEMPLATE_KINDS:
            return _error(f"kind must be one of: {' | '.join(TEMPLATE_KINDS)}")
        templates = repository.list_templates(kind or None)
        return json.dumps({
            "status": "ok",
            "count": len(templates),
            "templates": [
                {**t.summary(), "template_kind": t.template_kind, "author": t.teacher_id}
                for t in templates
            ],
        }, ensure_ascii=False, indent=2)

    @mcp.tool
    async def get_template(ctx: Context, template_id: str) -> str:
        """Fetch one approved template with its blocks and rendered text.

        Args:
            template_id: ID from list_templates.
        """
        template = repository.get_template(template_id)
        if template is None:
            return json.dumps({"status": "not_found", "template_id": template_id})
        data = template.to_dict()
        data["rendered"] = render_prompt(template.blocks)
        return json.dumps({"status": "ok", "template": data}, ensure_ascii=False, indent=2)

    @mcp.tool
    async def use_template(
        ctx: Context,
        template_id: str,
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Copy a template into the teacher's own prompts.

        Args:
            template_id: ID from list_templates.
            teacher_id: Who receives the copy.
        """
        try:
            prompt = repository.use_template(template_id, teacher_id=teacher_id)
        except RepositoryError:
            return json.dumps({"status": "not_found", "template_id": template_id})
        return json.dumps(
            {"status": "saved", "prompt_id": prompt.id, "prompt": prompt.to_dict()},
            ensure_ascii=False,
            indent=2,
        )

    @mcp.tool
    async def submit_template(
        ctx: Context,
        prompt_id: str,
        teacher_id: str = DEFAULT_TEACHER_ID,
    ) -> str:
        """Propose one of your saved prompts as a community template.

        It appears in the library once a moderator approves it.

        Args:
            prompt_id: ID of the saved prompt to share.
            teacher_id: Owner of the prompt.
        """
        try:
            prompt = repository.submit_template(prompt_id, teacher_id=teacher_id)
        except RepositoryError as exc:
            return _error(str(exc))
        return json.dumps({
            "status": "submitted",
            "prompt_id": prompt.id,
            "template_status": prompt.template_status,
        })

    if not moderation:
        return

    @mcp.tool
    async def list_template_submissions(ctx: Context) -> str:
        """List community template submissions awaiting review."""
        pending = repository.pending_templates()
        return json.dumps({
            "status": "ok",
            "count": len(pending),
            "submissions": [{**p.summary(), "author": p.teacher_id} for p in pending],
        }, ensure_ascii=False, indent=2)

    @mcp.tool
    async def review_template(ctx: Context, prompt_id: str, approve: bool) -> str:
        """Approve or reject a community template submission.

        Args:
            prompt_id: ID from list_template_submissions.
            approve: True to publish it, False to reject it.
        """
        try:
            prompt = repository.review_template(prompt_id, approve=approve)
        except RepositoryError as exc:
            return _error(str(exc))
        return json.dumps({
            "status": "reviewed",
            "prompt_id": prompt.id,
            "template_status": prompt.template_status,
        })

    @mcp.tool
    async def publish_template(ctx: Context, prompt_id: str, publish: bool = True) -> str:
        """Publish any saved prompt as an official template, or withdraw it.

        Args:
            prompt_id: ID of the prompt.
            publish: False withdraws the template from the library.
        """
        try:
            if publish:
                prompt = repository.publish_template(prompt_id)
            else:
                prompt = repository.unpublish_template(prompt_id)
        except RepositoryError as exc:
            return _error(str(exc))
        return json.dumps({
            "status": "published" if publish else "unpublished",
            "prompt_id": prompt.id,
            "template_kind": prompt.template_kind,
        })

    logger.info("Template moderation tools registered")
