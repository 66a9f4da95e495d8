"""Shared test fixtures for Promptomatic tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("OPENROUTER_API_KEY", "")
    monkeypatch.setenv("OPENROUTER_FALLBACK_MODEL", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("TEMPLATE_MODERATION", "false")
    monkeypatch.delenv("PROMPTOMATIC_HOST", raising=False)
    monkeypatch.delenv("PROMPTOMATIC_PORT", raising=False)
    monkeypatch.delenv("PROMPTOMATIC_ALLOW_INSECURE_BIND", raising=False)


# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from promptomatic.core.audit.logger import TurnAuditLogger  # noqa: E402
from promptomatic.core.llm.client import CompletionClient  # noqa: E402
from promptomatic.core.llm.providers.mock import MockProvider  # noqa: E402
from promptomatic.core.storage.database import PromptDatabase  # noqa: E402
from promptomatic.core.storage.repository import PromptRepository  # noqa: E402
from promptomatic.domains.teaching.domain_logic.interview import InterviewEngine  # noqa: E402

PRIMARY_MODEL = "test/primary-model"
FALLBACK_MODEL = "test/fallback-model"


# ---------------------------------------------------------------------------
# Canned provider replies
# ---------------------------------------------------------------------------

def _intent_reply(**overrides: Any) -> dict[str, Any]:
    reply: dict[str, Any] = {
        "level": "B1",
        "topic": "ordering food at a restaurant",
        "activity_type": "roleplay",
        "audience": "adults",
        "duration": "30 minutes",
        "source_type": "from_scratch",
        "missing_fields": [],
        "summary": "A 30-minute restaurant roleplay for adult B1 learners.",
    }
    reply.update(overrides)
    return reply


def _questions_reply(*fields: str) -> dict[str, Any]:
    return {
        "questions": [
            {
                "id": f"q{i}",
                "question": f"What {field} do you have in mind?",
                "field": field,
                "options": [
                    {"label": f"{field} A", "value": f"{field}-a", "recommended": True},
                    {"label": f"{field} B", "value": f"{field}-b"},
                ],
                "allow_other": True,
            }
            for i, field in enumerate(fields, start=1)
        ]
    }


def _prompt_reply(name: str = "Restaurant roleplay", **overrides: Any) -> dict[str, Any]:
    prompt: dict[str, Any] = {
        "name": name,
        "blocks": [
            {
                "technique": "role",
                "content": "You are a friendly waiter in a Paris bistro.",
                "annotation": "A persona keeps the dialogue natural.",
                "order": 1,
            },
            {
                "technique": "context",
                "content": "The learners are adult B1 students practising ordering food.",
                "annotation": "Level and audience calibrate the language.",
                "order": 2,
            },
            {
                "technique": "constraints",
                "content": "Keep each turn under 40 words and use the vous form.",
                "annotation": "Short turns leave room for the learner.",
                "order": 3,
            },
        ],
        "tips": ["Run it twice with different menus."],
        "source_type": "from_scratch",
        "suggested_tags": ["roleplay", "B1"],
    }
    prompt.update(overrides)
    return {"kind": "prompt", "prompt": prompt}


def _ask_user_reply(*fields: str) -> dict[str, Any]:
    return {"kind": "ask_user", **_questions_reply(*fields)}


@pytest.fixture
def intent_reply():
    """Factory for intent-analysis replies (complete unless overridden)."""
    return _intent_reply


@pytest.fixture
def questions_reply():
    """Factory for question-generation replies, one question per field."""
    return _questions_reply


@pytest.fixture
def prompt_reply():
    """Factory for assembly replies of kind 'prompt'."""
    return _prompt_reply


@pytest.fixture
def ask_user_reply():
    """Factory for assembly replies of kind 'ask_user'."""
    return _ask_user_reply


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider() -> MockProvider:
    """Scripted provider; queue replies with ``mock_provider.queue(...)``."""
    return MockProvider()


@pytest.fixture
def completion_client(mock_provider: MockProvider) -> CompletionClient:
    return CompletionClient(
        mock_provider,
        api_key="test-key",
        primary_model=PRIMARY_MODEL,
        timeout_s=5.0,
        reasoning_timeout_s=10.0,
    )


@pytest.fixture
def engine(completion_client: CompletionClient) -> InterviewEngine:
    return InterviewEngine(completion_client)


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def prompt_db():
    """In-memory database with the full schema."""
    db = PromptDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def repository(prompt_db: PromptDatabase) -> PromptRepository:
    return PromptRepository(prompt_db)


@pytest.fixture
def turn_audit(prompt_db: PromptDatabase) -> TurnAuditLogger:
    return TurnAuditLogger(prompt_db)
