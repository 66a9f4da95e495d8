"""Data models for the prompt store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from promptomatic.domains.teaching.domain_logic.models import PromptBlock


@dataclass
class StoredPrompt:
    """A saved teaching prompt: the terminal artifact of a conversation."""

    id: str
    teacher_id: str
    name: str
    language: str
    blocks: list[PromptBlock]
    tips: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    source_type: str = "from_scratch"
    original_text: str = ""
    model_recommendation: str | None = None
    model_recommendation_reason: str | None = None
    is_template: bool = False
    template_id: str | None = None         # template this prompt was cloned from
    template_kind: str = "official"        # 'official' | 'community'
    template_status: str = "none"          # 'none' | 'pending' | 'approved' | 'rejected'
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "name": self.name,
            "language": self.language,
            "blocks": [b.to_dict() for b in self.blocks],
            "tips": list(self.tips),
            "tags": list(self.tags),
            "source_type": self.source_type,
            "original_text": self.original_text,
            "model_recommendation": self.model_recommendation,
            "model_recommendation_reason": self.model_recommendation_reason,
            "is_template": self.is_template,
            "template_id": self.template_id,
            "template_kind": self.template_kind,
            "template_status": self.template_status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def summary(self) -> dict[str, Any]:
        """Listing view without block contents."""
        return {
            "id": self.id,
            "name": self.name,
            "language": self.language,
            "tags": list(self.tags),
            "block_count": len(self.blocks),
            "template_id": self.template_id,
            "updated_at": self.updated_at,
        }
