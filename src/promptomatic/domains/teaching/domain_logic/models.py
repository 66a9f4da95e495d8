"""Teaching-prompt domain models and constants."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

TECHNIQUES = ("role", "context", "examples", "constraints", "steps", "think_first")

# Fields the intent analyzer extracts; also the vocabulary of Question.field.
INTENT_FIELDS = ("level", "topic", "activity_type", "audience", "duration")

ISSUE_TYPES = ("too_complex", "too_simple", "wrong_format", "off_topic", "other")

LANGUAGES = ("fr", "en")

SOURCE_TYPES = ("from_scratch", "from_source")

# Shorter requests carry too little signal to analyze.
MIN_REQUEST_LENGTH = 10

Language = Literal["fr", "en"]
SourceType = Literal["from_scratch", "from_source"]
ChangeType = Literal["modified", "added", "removed"]


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _source_type(value: Any) -> SourceType:
    return "from_source" if value == "from_source" else "from_scratch"


def str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


# ---------------------------------------------------------------------------
# Intent analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IntentAnalysis:
    """Structured reading of a teacher's free-text request.

    Produced once per conversation and carried into every later turn.
    """

    level: str | None = None
    topic: str | None = None
    activity_type: str | None = None
    audience: str | None = None
    duration: str | None = None
    source_type: SourceType = "from_scratch"
    missing_fields: tuple[str, ...] = ()
    summary: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IntentAnalysis:
        """Parse a raw provider payload. Unknown or duplicate missing fields are dropped."""
        missing: list[str] = []
        for name in str_list(data.get("missing_fields")):
            if name in INTENT_FIELDS and name not in missing:
                missing.append(name)
        return cls(
            level=_str_or_none(data.get("level")),
            topic=_str_or_none(data.get("topic")),
            activity_type=_str_or_none(data.get("activity_type")),
            audience=_str_or_none(data.get("audience")),
            duration=_str_or_none(data.get("duration")),
            source_type=_source_type(data.get("source_type")),
            missing_fields=tuple(missing),
            summary=str(data.get("summary") or "").strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "topic": self.topic,
            "activity_type": self.activity_type,
            "audience": self.audience,
            "duration": self.duration,
            "source_type": self.source_type,
            "missing_fields": list(self.missing_fields),
            "summary": self.summary,
        }


# ---------------------------------------------------------------------------
# Clarification questions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QuestionOption:
    label: str
    value: str
    recommended: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"label": self.label, "value": self.value}
        if self.recommended is not None:
            data["recommended"] = self.recommended
        return data


@dataclass(frozen=True)
class Question:
    """Canonical clarification question (see ``questions.normalize_question``).

    ``multi_select``, ``allow_other`` and ``other_placeholder`` stay ``None``
    when the provider did not say, so callers can pick their own default.
    """

    id: str
    question: str
    field: str
    options: tuple[QuestionOption, ...] = ()
    multi_select: bool | None = None
    allow_other: bool | None = None
    other_placeholder: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "field": self.field,
            "options": [o.to_dict() for o in self.options],
        }
        if self.multi_select is not None:
            data["multi_select"] = self.multi_select
        if self.allow_other is not None:
            data["allow_other"] = self.allow_other
        if self.other_placeholder is not None:
            data["other_placeholder"] = self.other_placeholder
        return data


# ---------------------------------------------------------------------------
# Prompt blocks and assembly
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PromptBlock:
    """One technique section of a teaching prompt."""

    technique: str
    content: str
    annotation: str = ""
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptBlock:
        try:
            order = int(data.get("order", 0))
        except (TypeError, ValueError):
            order = 0
        return cls(
            technique=str(data.get("technique") or "").strip(),
            content=str(data.get("content") or ""),
            annotation=str(data.get("annotation") or ""),
            order=order,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "technique": self.technique,
            "content": self.content,
            "annotation": self.annotation,
            "order": self.order,
        }


def parse_blocks(value: Any) -> list[PromptBlock]:
    """Parse a raw block list, dropping entries with an unknown technique or no content."""
    if not isinstance(value, list):
        return []
    blocks = [PromptBlock.from_dict(b) for b in value if isinstance(b, dict)]
    return [b for b in blocks if b.technique in TECHNIQUES and b.content.strip()]


def sort_blocks(blocks: list[PromptBlock]) -> list[PromptBlock]:
    """Blocks in rendering order. Ties keep their input order."""
    return sorted(blocks, key=lambda b: b.order)


def render_prompt(blocks: list[PromptBlock]) -> str:
    """Concatenate block contents into the final copy-pasteable prompt."""
    return "\n\n".join(b.content.strip() for b in sort_blocks(blocks) if b.content.strip())


@dataclass
class AssembledPrompt:
    name: str
    blocks: list[PromptBlock]
    tips: list[str] = field(default_factory=list)
    source_type: SourceType = "from_scratch"
    suggested_tags: list[str] = field(default_factory=list)
    model_recommendation: str | None = None
    model_recommendation_reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssembledPrompt:
        return cls(
            name=str(data.get("name") or "").strip(),
            blocks=sort_blocks(parse_blocks(data.get("blocks"))),
            tips=str_list(data.get("tips")),
            source_type=_source_type(data.get("source_type")),
            suggested_tags=str_list(data.get("suggested_tags")),
            model_recommendation=_str_or_none(data.get("model_recommendation")),
            model_recommendation_reason=_str_or_none(data.get("model_recommendation_reason")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "blocks": [b.to_dict() for b in self.blocks],
            "tips": list(self.tips),
            "source_type": self.source_type,
            "suggested_tags": list(self.suggested_tags),
        }
        if self.model_recommendation:
            data["model_recommendation"] = self.model_recommendation
            data["model_recommendation_reason"] = self.model_recommendation_reason
        return data


@dataclass
class AssembleResult:
    """Tagged union: a finished prompt, or a request for more answers."""

    kind: Literal["prompt", "ask_user"]
    prompt: AssembledPrompt | None = None
    questions: list[Question] = field(default_factory=list)

    @classmethod
    def of_prompt(cls, prompt: AssembledPrompt) -> AssembleResult:
        return cls(kind="prompt", prompt=prompt)

    @classmethod
    def of_questions(cls, questions: list[Question]) -> AssembleResult:
        return cls(kind="ask_user", questions=list(questions))

    def to_dict(self) -> dict[str, Any]:
        if self.kind == "prompt" and self.prompt is not None:
            return {"kind": "prompt", "prompt": self.prompt.to_dict()}
        return {"kind": "ask_user", "questions": [q.to_dict() for q in self.questions]}


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BlockChange:
    technique: str
    type: ChangeType
    reason: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"technique": self.technique, "type": self.type, "reason": self.reason}


@dataclass
class RefinedPrompt:
    blocks: list[PromptBlock]
    changes: list[BlockChange] = field(default_factory=list)
    tips: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "blocks": [b.to_dict() for b in self.blocks],
            "changes": [c.to_dict() for c in self.changes],
            "tips": list(self.tips),
        }


# ---------------------------------------------------------------------------
# Teacher profile (read-only context that biases defaults)
# ---------------------------------------------------------------------------

@dataclass
class TeacherProfile:
    languages_taught: list[str] = field(default_factory=list)
    typical_levels: list[str] = field(default_factory=list)
    typical_audience: list[str] = field(default_factory=list)
    typical_duration: str | None = None
    teaching_context: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TeacherProfile:
        return cls(
            languages_taught=str_list(data.get("languages_taught")),
            typical_levels=str_list(data.get("typical_levels")),
            typical_audience=str_list(data.get("typical_audience")),
            typical_duration=_str_or_none(data.get("typical_duration")),
            teaching_context=_str_or_none(data.get("teaching_context")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "languages_taught": list(self.languages_taught),
            "typical_levels": list(self.typical_levels),
            "typical_audience": list(self.typical_audience),
            "typical_duration": self.typical_duration,
            "teaching_context": self.teaching_context,
        }

    def is_empty(self) -> bool:
        return not any(
            [
                self.languages_taught,
                self.typical_levels,
                self.typical_audience,
                self.typical_duration,
                self.teaching_context,
            ]
        )

    def as_context(self) -> str:
        """Render the profile as a short context block for the model."""
        lines: list[str] = []
        if self.languages_taught:
            lines.append(f"- Languages taught: {', '.join(self.languages_taught)}")
        if self.typical_levels:
            lines.append(f"- Typical levels: {', '.join(self.typical_levels)}")
        if self.typical_audience:
            lines.append(f"- Typical audience: {', '.join(self.typical_audience)}")
        if self.typical_duration:
            lines.append(f"- Typical activity duration: {self.typical_duration}")
        if self.teaching_context:
            lines.append(f"- Teaching context: {self.teaching_context}")
        return "\n".join(lines)
