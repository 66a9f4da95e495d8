"""Tolerant extraction of a single JSON object from model output.

Models asked for "JSON only" still wrap it in Markdown fences or surround
it with a sentence of prose. Recovery order: parse as-is, parse with the
fences stripped, then parse the slice from the first ``{`` to the last ``}``.
"""

from __future__ import annotations

import json
import re
from typing import Any

from promptomatic.core.llm.errors import MalformedJsonError

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(content: str) -> str:
    """Remove one surrounding Markdown code fence (```json ... ```) if present."""
    match = _FENCE_RE.match(content)
    if match:
        return match.group(1).strip()
    return content.strip()


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse ``content`` into one JSON object or raise :class:`MalformedJsonError`."""
    candidates = [content, strip_code_fences(content)]
    start = content.find("{")
    end = content.rfind("}")
    if start != -1 and end > start:
        candidates.append(content[start : end + 1])

    for candidate in candidates:
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed

    raise MalformedJsonError("AI returned malformed JSON.")
