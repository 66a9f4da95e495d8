"""MCP Prompts: pre-built interaction templates for teachers."""

from __future__ import annotations

from fastmcp import FastMCP


def register_teaching_prompts(mcp: FastMCP) -> None:
    """Register teaching domain MCP prompts."""

    @mcp.prompt()
    def new_teaching_prompt(request: str = "", language: str = "fr") -> str:
        """Prompt template that walks a teacher through building a new prompt."""
        opening = (
            f'Here is what I need for my class: "{request}"'
            if request
            else "I'd like to build a prompt for a language class activity."
        )
        return f"""{opening}

Please help me turn this into a structured teaching prompt:

1. Analyze my request with analyze_intent (language: {language})
2. If details are missing, ask me the questions from generate_questions
3. Assemble the prompt with assemble_prompt, using my answers
4. Show me each block with its annotation, then the full rendered prompt
5. Offer to save it with save_prompt

Keep the questions short and suggest the most likely answer first."""
