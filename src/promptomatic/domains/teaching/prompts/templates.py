"""System prompt templates and user-message builders for the four interview turns.

All instructions are English; the language of the generated content is
controlled per call.
"""

from __future__ import annotations

import json
from typing import Any

from promptomatic.domains.teaching.domain_logic.models import (
    IntentAnalysis,
    PromptBlock,
    TeacherProfile,
)


def language_instruction(language: str) -> str:
    if language == "fr":
        return (
            "IMPORTANT: All your output text (questions, options, summaries, content, "
            "annotations, tips) MUST be in idiomatic French, natural and fluent as a native "
            "French speaker would write. Never translate literally from English."
        )
    return "All your output text must be in clear, natural English."


def _language_name(language: str) -> str:
    return "French" if language == "fr" else "English"


# ---------------------------------------------------------------------------
# Turn 1: intent analysis
# ---------------------------------------------------------------------------

def intent_analysis_prompt(language: str) -> str:
    return f"""\
You are an expert at analyzing language teaching requests. A teacher has described \
what they need in free text. Your job is to extract structured information and \
decide what, if anything, is worth asking back.

{language_instruction(language)}

Extract the following fields. Set a field to null if it is not mentioned or unclear:
- level: proficiency level (A1, A2, B1, B2, C1, C2, or a description like "beginner")
- topic: the subject or theme of the activity
- activity_type: roleplay, worksheet, lesson plan, quiz, writing prompt, grammar exercise, ...
- audience: adults, teenagers, children, professionals, university students, ...
- duration: how long the activity should take
- source_type: "from_source" if the teacher works from an existing text, document or \
resource, otherwise "from_scratch"

missing_fields lists the fields worth a clarification question. A field belongs in \
missing_fields ONLY if all three hold:
1. it is ambiguous or absent from the request;
2. it has a high impact on the quality of the resulting prompt;
3. it cannot be safely inferred from the wording, from sensible pedagogical defaults, \
or from the teacher profile when one is given.
Most requests need 1 to 3 missing fields; a clear request needs none.

summary: one {_language_name(language)} sentence describing what the teacher wants.

Respond with a single JSON object matching this exact structure:
{{
  "level": string | null,
  "topic": string | null,
  "activity_type": string | null,
  "audience": string | null,
  "duration": string | null,
  "source_type": "from_scratch" | "from_source",
  "missing_fields": string[],
  "summary": string
}}"""


# ---------------------------------------------------------------------------
# Turn 2: clarification questions
# ---------------------------------------------------------------------------

def questions_prompt(language: str) -> str:
    return f"""\
You generate follow-up questions for a language teaching prompt builder. You receive \
the intent analysis of a teacher's request and the list of missing fields. Generate \
2 to 6 short, targeted questions that fill exactly those gaps.

{language_instruction(language)}

Rules:
- Ask ONLY about the listed missing fields, at most one question per field.
- Each question offers 3-5 contextually relevant options. Mark the single most \
likely option with "recommended": true.
- Set "allow_other" to true for open-ended fields (topic, audience) so the teacher can \
type their own answer, and give a short "other_placeholder".
- Set "multi_select" to true only when several answers can sensibly combine.
- Questions should feel conversational and supportive, not like a form.
- "field" must be one of: level, topic, activity_type, audience, duration.

Respond with a single JSON object:
{{
  "questions": [
    {{
      "id": "q1",
      "question": "...",
      "field": "level",
      "options": [{{"label": "B1", "value": "B1", "recommended": true}}],
      "multi_select": false,
      "allow_other": false,
      "other_placeholder": "..."
    }}
  ]
}}"""


# ---------------------------------------------------------------------------
# Turn 3: assembly
# ---------------------------------------------------------------------------

def assembly_prompt(language: str) -> str:
    lang = _language_name(language)
    return f"""\
You are an expert prompt engineer specializing in education. Assemble a structured \
teaching prompt from the teacher's request, the intent analysis and the teacher's answers.

{language_instruction(language)}

The prompt is made of blocks, one per technique:
1. role: who the AI should be (persona, tone, expertise)
2. context: audience, level, goals, timeframe
3. examples: what "good" looks like for this task
4. constraints: output format, length, structure, language level
5. steps: complex tasks broken into sequential instructions
6. think_first: ask the AI to reason before answering

Rules:
- Use 3-6 techniques depending on complexity; "role" and "context" are almost always needed.
- "content" is the actual prompt text for the technique; "annotation" is 1-2 {lang} \
sentences explaining why the technique helps here.
- "order" is the rendering sequence (role first, then context, ...).
- Give a short descriptive {lang} "name", 2-4 "suggested_tags" and 2-4 practical "tips" \
for using the prompt.
- Recommend a model ("model_recommendation") and say why in one sentence.

If, and only if, a missing detail would make the prompt clearly worse and cannot be \
inferred, ask instead of guessing: return kind "ask_user" with 1 to 3 questions in the \
question format (id, question, field, options with label/value/recommended, allow_other). \
Never ask again about something the teacher already answered unless the answer \
contradicts the request.

Respond with a single JSON object, either:
{{
  "kind": "prompt",
  "prompt": {{
    "name": "...",
    "blocks": [{{"technique": "role", "content": "...", "annotation": "...", "order": 1}}],
    "tips": ["..."],
    "source_type": "from_scratch" | "from_source",
    "suggested_tags": ["..."],
    "model_recommendation": "...",
    "model_recommendation_reason": "..."
  }}
}}
or:
{{
  "kind": "ask_user",
  "questions": [{{"id": "q1", "question": "...", "field": "topic", "options": [...]}}]
}}"""


# ---------------------------------------------------------------------------
# Turn 4: refinement
# ---------------------------------------------------------------------------

ISSUE_DESCRIPTIONS = {
    "too_complex": "The output is too complex for the learners (language or task load).",
    "too_simple": "The output is too simple and does not stretch the learners.",
    "wrong_format": "The output does not have the expected format or structure.",
    "off_topic": "The output drifts away from the intended topic or goal.",
    "other": "Another problem, described by the teacher.",
}


def refinement_prompt(language: str) -> str:
    return f"""\
You are an expert prompt engineer. A teacher used a structured teaching prompt and \
was not satisfied with the result. Improve the prompt blocks to fix the reported issue.

{language_instruction(language)}

Rules:
- Change only what the issue requires. Blocks that need no change MUST be returned \
byte-identical, including their original annotation.
- Changed or added blocks get a freshly written annotation explaining the new version.
- You may add a technique block or remove one when that fixes the issue.
- "changes" lists EVERY technique whose block you modified, added or removed, with a \
one-sentence reason. Never omit one.
- Add 1-3 "tips" for getting better output with the refined prompt.

Respond with a single JSON object:
{{
  "blocks": [{{"technique": "...", "content": "...", "annotation": "...", "order": 1}}],
  "changes": [{{"technique": "...", "type": "modified" | "added" | "removed", "reason": "..."}}],
  "tips": ["..."]
}}"""


# ---------------------------------------------------------------------------
# User messages
# ---------------------------------------------------------------------------

def _with_profile(payload: dict[str, Any], profile: TeacherProfile | None) -> str:
    body = json.dumps(payload, ensure_ascii=False, indent=2)
    if profile is None or profile.is_empty():
        return body
    return f"{body}\n\nTeacher profile (use it to infer sensible defaults):\n{profile.as_context()}"


def intent_user_message(text: str, profile: TeacherProfile | None = None) -> str:
    return _with_profile({"teacher_request": text}, profile)


def questions_user_message(intent: IntentAnalysis, profile: TeacherProfile | None = None) -> str:
    return _with_profile(
        {"intent": intent.to_dict(), "missing_fields": list(intent.missing_fields)},
        profile,
    )


def assembly_user_message(
    intent: IntentAnalysis,
    answers: dict[str, str],
    original_text: str,
    profile: TeacherProfile | None = None,
) -> str:
    return _with_profile(
        {
            "teacher_request": original_text,
            "intent": intent.to_dict(),
            "answers": dict(answers),
        },
        profile,
    )


def refinement_user_message(
    blocks: list[PromptBlock],
    issue_type: str,
    description: str | None = None,
    output_sample: str | None = None,
    profile: TeacherProfile | None = None,
) -> str:
    payload: dict[str, Any] = {
        "current_blocks": [b.to_dict() for b in blocks],
        "issue_type": issue_type,
        "issue": ISSUE_DESCRIPTIONS.get(issue_type, issue_type),
    }
    if description:
        payload["teacher_description"] = description
    if output_sample:
        payload["poor_output_sample"] = output_sample
    return _with_profile(payload, profile)
