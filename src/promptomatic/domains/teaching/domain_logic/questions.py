"""Question normalization.

Providers return clarification questions in two schema generations:

* legacy: ``options`` as bare strings, ``allow_freetext``;
* current: ``options`` as ``{label, value, recommended}`` objects,
  ``allow_other``, ``multi_select``, ``other_placeholder``.

Both are unified here, once, into :class:`Question`. Nothing downstream
checks for the legacy shape.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping

from promptomatic.domains.teaching.domain_logic.models import (
    INTENT_FIELDS,
    Question,
    QuestionOption,
)


def _text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, (str, int, float)):
        return str(value).strip()
    return ""


def _flag(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def normalize_option(raw: Any) -> QuestionOption | None:
    """One option from either shape; ``None`` when it has neither label nor value."""
    if isinstance(raw, QuestionOption):
        raw = raw.to_dict()
    if isinstance(raw, Mapping):
        label = _text(raw.get("label"))
        value = _text(raw.get("value"))
        recommended = _flag(raw.get("recommended"))
    else:
        label = value = _text(raw)
        recommended = None

    label = label or value
    value = value or label
    if not label:
        return None
    return QuestionOption(label=label, value=value, recommended=recommended)


def normalize_question(raw: Mapping[str, Any] | Question) -> Question:
    """Canonical form of one question. Idempotent."""
    if isinstance(raw, Question):
        raw = raw.to_dict()

    options: list[QuestionOption] = []
    raw_options = raw.get("options")
    if isinstance(raw_options, list):
        for entry in raw_options:
            option = normalize_option(entry)
            if option is not None:
                options.append(option)

    allow_other = _flag(raw.get("allow_other"))
    if allow_other is None:
        allow_other = _flag(raw.get("allow_freetext"))

    placeholder = raw.get("other_placeholder")

    field = _text(raw.get("field"))
    return Question(
        id=_text(raw.get("id")) or field,
        question=_text(raw.get("question")),
        field=field,
        options=tuple(options),
        multi_select=_flag(raw.get("multi_select")),
        allow_other=allow_other,
        other_placeholder=_text(placeholder) or None,
    )


def normalize_questions(
    raw: Any,
    allowed_fields: Iterable[str] = INTENT_FIELDS,
) -> list[Question]:
    """Normalize a provider question list.

    Questions without text, about a field outside ``allowed_fields``, or
    repeating a field already asked in the same round are dropped. Missing
    ids are numbered ``q1``, ``q2``... in order.
    """
    if not isinstance(raw, list):
        return []

    allowed = set(allowed_fields)
    seen_fields: set[str] = set()
    questions: list[Question] = []
    for entry in raw:
        if not isinstance(entry, (Mapping, Question)):
            continue
        question = normalize_question(entry)
        if not question.question or question.field not in allowed:
            continue
        if question.field in seen_fields:
            continue
        seen_fields.add(question.field)
        if not _text(entry.get("id") if isinstance(entry, Mapping) else entry.id):
            question = replace(question, id=f"q{len(questions) + 1}")
        questions.append(question)
    return questions
