"""Reconcile a refiner reply with the blocks it was asked to refine.

The refiner is told to leave untouched blocks byte-identical and to list
every change it makes. Models drift on both counts, so the reply is
checked against the original block list:

* blocks are paired by technique and occurrence, so the second
  ``examples`` block of the reply is compared with the second one of the
  original;
* a block whose content did not change gets its original block back,
  annotation included;
* ``changes`` is recomputed from the actual diff, keeping the model's
  reason for a technique when it gave one.
"""

from __future__ import annotations

import logging
from typing import Any

from promptomatic.domains.teaching.domain_logic.models import (
    BlockChange,
    PromptBlock,
    RefinedPrompt,
    parse_blocks,
    sort_blocks,
    str_list,
)

logger = logging.getLogger(__name__)

_DEFAULT_REASONS = {
    "modified": "Rewritten to address the reported issue.",
    "added": "Added to address the reported issue.",
    "removed": "Removed because it worked against the reported issue.",
}


def _reported_reasons(raw_changes: Any) -> dict[tuple[str, str], str]:
    reasons: dict[tuple[str, str], str] = {}
    if not isinstance(raw_changes, list):
        return reasons
    for entry in raw_changes:
        if not isinstance(entry, dict):
            continue
        technique = str(entry.get("technique") or "").strip()
        change_type = str(entry.get("type") or "").strip()
        reason = str(entry.get("reason") or "").strip()
        if technique and change_type and reason:
            reasons.setdefault((technique, change_type), reason)
    return reasons


def _keyed(blocks: list[PromptBlock]) -> list[tuple[tuple[str, int], PromptBlock]]:
    """Pair each block with ``(technique, occurrence)`` in rendering order."""
    counts: dict[str, int] = {}
    keyed = []
    for block in sort_blocks(blocks):
        index = counts.get(block.technique, 0)
        counts[block.technique] = index + 1
        keyed.append(((block.technique, index), block))
    return keyed


def reconcile_refinement(
    original_blocks: list[PromptBlock],
    raw: dict[str, Any],
) -> RefinedPrompt:
    """Build a :class:`RefinedPrompt` whose ``changes`` match the real diff."""
    originals = _keyed(original_blocks)
    by_key = dict(originals)

    reasons = _reported_reasons(raw.get("changes"))
    blocks: list[PromptBlock] = []
    changes: list[BlockChange] = []
    seen: set[tuple[str, int]] = set()

    for key, block in _keyed(parse_blocks(raw.get("blocks"))):
        seen.add(key)
        original = by_key.get(key)
        if original is not None and original.content == block.content:
            blocks.append(original)
            continue

        change_type = "added" if original is None else "modified"
        blocks.append(block)
        changes.append(
            BlockChange(
                technique=block.technique,
                type=change_type,
                reason=reasons.get((block.technique, change_type), _DEFAULT_REASONS[change_type]),
            )
        )

    for key, block in originals:
        if key not in seen:
            changes.append(
                BlockChange(
                    technique=block.technique,
                    type="removed",
                    reason=reasons.get((block.technique, "removed"), _DEFAULT_REASONS["removed"]),
                )
            )

    reported = set(reasons)
    actual = {(c.technique, c.type) for c in changes}
    if reported - actual:
        logger.debug("Dropped %d change entries with no matching diff", len(reported - actual))

    return RefinedPrompt(blocks=blocks, changes=changes, tips=str_list(raw.get("tips")))
