"""MCP tool for reviewing the turn log.

The log never holds a teacher's request text, only hashed input
references, so it can be shown as is.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from promptomatic.core.audit.logger import TurnAuditLogger

logger = logging.getLogger(__name__)

_DISPLAY_FIELDS = ("timestamp", "stage", "teacher_id", "language", "status", "error_type", "duration_ms")


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: TurnAuditLogger,
) -> None:
    """Register turn log tools on the MCP server."""

    @mcp.tool
    async def turn_history(
        ctx: Context,
        stage: str = "",
        status: str = "",
        limit: int = 20,
    ) -> str:
        """Show recent interview turns and how they ended.

        Useful to see which stage fails and why (rate limits, timeouts,
        malformed replies).

        Args:
            stage: Only this stage: analyze, questions, assemble or refine.
            status: Only 'success' or 'failure' turns.
            limit: Maximum number of turns to return (1-200).
        """
        limit = min(max(limit, 1), 200)
        turns = audit_logger.recent_turns(
            stage=stage or None,
            status=status or None,
            limit=limit,
        )
        return json.dumps({
            "status": "ok",
            "totals": audit_logger.count_by_status(),
            "turns": [{k: turn.get(k) for k in _DISPLAY_FIELDS} for turn in turns],
        }, indent=2)
