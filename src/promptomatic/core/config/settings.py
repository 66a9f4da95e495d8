"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Promptomatic server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    promptomatic_host: str = "127.0.0.1"
    promptomatic_port: int = 8001
    promptomatic_log_level: str = "info"
    promptomatic_allow_insecure_bind: bool = False

    # Upstream LLM (OpenAI-compatible chat completions)
    llm_provider: Literal["openrouter", "mock"] = "openrouter"
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "google/gemini-2.0-flash-001"
    openrouter_fallback_model: str = ""

    # Per-attempt timeouts; models matching a marker get the reasoning timeout.
    llm_timeout_s: float = 30.0
    llm_reasoning_timeout_s: float = 90.0
    llm_reasoning_model_markers: list[str] = [
        "/o1",
        "/o3",
        "/o4",
        "-r1",
        "reasoning",
        "thinking",
    ]

    # Attribution headers sent upstream
    app_url: str = "https://promptomatic.com"
    app_title: str = "Promptomatic"

    # Conversation (0 disables the cap)
    max_clarification_rounds: int = 3

    # Storage (prompt store + teacher profiles)
    db_path: str = "~/.promptomatic/promptomatic.db"

    # Template library: moderation tools (approve, reject, publish) are admin-only
    template_moderation: bool = False


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
