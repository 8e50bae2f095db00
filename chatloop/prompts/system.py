"""System prompt builder."""

from __future__ import annotations

from typing import Any

from chatloop.store.models import AgentType


def build_system_prompt(
    owner: Any,
    agent_type: AgentType,
    tools: list[dict] | None = None,
    extra_sections: list[str] | None = None,
) -> list[dict]:
    """
    Build the system prompt as a list of text blocks.

    The owning conversable supplies its own messages through an optional
    ``system_messages(agent_type)`` method (strings or ``{"type": "text"}``
    blocks).  Without one, a short role section is used.  A tool roster is
    appended when tools are available to a tool-using role.
    """
    agent_type = AgentType(agent_type)
    blocks: list[dict] = []

    supplier = getattr(owner, "system_messages", None)
    supplied = supplier(agent_type) if callable(supplier) else None
    for item in supplied or []:
        if isinstance(item, dict):
            blocks.append(item)
        elif item:
            blocks.append({"type": "text", "text": str(item)})

    if not blocks:
        blocks.append({"type": "text", "text": ROLE_SECTIONS[agent_type]})

    if tools and agent_type.uses_tools:
        lines = [f"- **{t['name']}**: {t.get('description', '')}" for t in tools]
        blocks.append(
            {"type": "text", "text": "## Available Tools\n\n" + "\n".join(lines) + TOOL_DISCIPLINE}
        )

    for section in extra_sections or []:
        blocks.append({"type": "text", "text": section})

    return blocks


ROLE_SECTIONS = {
    AgentType.PLANNER: (
        "You are an AI assistant that plans work before doing it. "
        "Break requests into steps and use your tools to gather what you need."
    ),
    AgentType.CODER: (
        "You are an AI assistant that writes and changes code. "
        "Use your tools to inspect and act rather than asking the user to do it."
    ),
    AgentType.REVIEWER: (
        "You are an AI assistant that reviews work for correctness and clarity. "
        "Point out concrete problems and suggest fixes."
    ),
    AgentType.TESTER: (
        "You are an AI assistant that designs and evaluates tests. "
        "Describe cases, expected results and gaps in coverage."
    ),
}

TOOL_DISCIPLINE = """

Use only the tools listed above. Some tools need human approval before they
run; if a call is rejected, explain what you wanted to do and continue without it."""
