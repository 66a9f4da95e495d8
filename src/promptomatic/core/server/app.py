"""Promptomatic MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
import sqlite3

from fastmcp import FastMCP

from promptomatic.core.audit.logger import TurnAuditLogger
from promptomatic.core.config.settings import get_settings
from promptomatic.core.llm.client import CompletionClient
from promptomatic.core.llm.provider import LLMProvider, create_provider
from promptomatic.core.storage.database import DatabaseError, PromptDatabase
from promptomatic.core.storage.repository import PromptRepository
from promptomatic.domains.teaching.domain_logic.interview import InterviewEngine
from promptomatic.domains.teaching.prompts.teaching_prompts import register_teaching_prompts
from promptomatic.domains.teaching.tools.audit_tools import register_audit_tools
from promptomatic.domains.teaching.tools.interview_tools import register_interview_tools
from promptomatic.domains.teaching.tools.prompt_store_tools import register_prompt_store_tools
from promptomatic.domains.teaching.tools.template_tools import register_template_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Promptomatic"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    provider_override: LLMProvider | None = None,
    repository_override: PromptRepository | None = None,
    audit_logger_override: TurnAuditLogger | None = None,
) -> FastMCP:
    """Create and configure the Promptomatic MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Creates the upstream provider and the completion client
    3. Creates the interview engine
    4. Initializes the prompt store and the turn audit log
    5. Registers all tools and prompts
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Builds structured prompts for language teachers. Analyze a free-text "
            "request, ask the few clarification questions that matter, assemble a "
            "block-structured prompt, and refine saved prompts from teacher feedback."
        ),
    )

    # --- Initialize upstream LLM ---
    if provider_override is not None:
        provider = provider_override
        provider_name = "override"
        api_key = settings.openrouter_api_key or "mock"
    elif settings.llm_provider == "mock":
        provider = create_provider("mock")
        provider_name = "mock"
        api_key = "mock"
    else:
        provider = create_provider(
            "openrouter",
            base_url=settings.openrouter_base_url,
            app_url=settings.app_url,
            app_title=settings.app_title,
        )
        provider_name = "openrouter"
        api_key = settings.openrouter_api_key
        if not api_key:
            logger.warning(
                "No OPENROUTER_API_KEY configured; interview tools will return config_error"
            )

    client = CompletionClient(
        provider,
        api_key=api_key,
        primary_model=settings.openrouter_model,
        fallback_model=settings.openrouter_fallback_model,
        timeout_s=settings.llm_timeout_s,
        reasoning_timeout_s=settings.llm_reasoning_timeout_s,
        reasoning_markers=settings.llm_reasoning_model_markers,
    )
    engine = InterviewEngine(client)
    logger.info(
        "Interview engine ready (provider=%s, model=%s, fallback=%s)",
        provider_name,
        settings.openrouter_model,
        settings.openrouter_fallback_model or "none",
    )

    # --- Initialize storage (prompt store + turn audit log) ---
    repository: PromptRepository | None = repository_override
    audit_logger: TurnAuditLogger | None = audit_logger_override
    if repository is None:
        try:
            prompt_db = PromptDatabase(settings.db_path)
            prompt_db.initialize()
            repository = PromptRepository(prompt_db)
            if audit_logger is None:
                audit_logger = TurnAuditLogger(prompt_db)
            logger.info(
                "Prompt store initialized: %s (schema v%d)",
                settings.db_path,
                prompt_db.get_schema_version(),
            )
        except (DatabaseError, sqlite3.Error, OSError) as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence: prompts will not be stored")

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "llm_provider": provider_name,
            "api_key_configured": bool(api_key),
            "primary_model": settings.openrouter_model,
            "fallback_model": settings.openrouter_fallback_model or None,
            "storage_enabled": repository is not None,
        }
        if repository is not None:
            status["prompts_stored"] = repository.count_prompts()
        if audit_logger is not None:
            status["turns_by_status"] = audit_logger.count_by_status()
        return status

    register_interview_tools(
        server,
        engine,
        repository,
        audit_logger,
        max_clarification_rounds=settings.max_clarification_rounds,
    )
    logger.info("Interview tools registered")

    if repository is not None:
        register_prompt_store_tools(server, repository)
        register_template_tools(server, repository, moderation=settings.template_moderation)
        logger.info(
            "Prompt store and template tools registered (moderation=%s)",
            settings.template_moderation,
        )

    if audit_logger is not None:
        register_audit_tools(server, audit_logger)

    # --- Register prompts ---
    register_teaching_prompts(server)

    return server


# Module-level instance for FastMCP discovery ("...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
