"""
System and task prompt construction for chain roles.
"""

from __future__ import annotations

from collections.abc import Mapping

from .roles import ROLE_DEFINITIONS, canonical_role
from .types import RoleDefinition

DEFAULT_EXCERPT_CHARS = 500

ROLE_INSTRUCTIONS = [
    "Focus on your specific role and expertise",
    "Build upon the work of previous agents in the chain",
    "Provide clear, actionable output for the next agent",
    "Maintain high quality and attention to detail",
    "Work collaboratively as part of the multi-agent system",
]


def generic_system_prompt(role: str) -> str:
    return f"You are a {role} agent in a multi-agent system."


def build_system_prompt(role: str, definition: RoleDefinition | None = None) -> str:
    """
    Build the system prompt for a role.

    Args:
        role: Role name as it appears in the chain (aliases allowed)
        definition: Role definition; looked up from the catalog when omitted

    Returns:
        Prompt text; roles without a definition get a one-line generic prompt
    """
    if definition is None:
        definition = ROLE_DEFINITIONS.get(canonical_role(role))
    if definition is None:
        return generic_system_prompt(role)

    capabilities = "\n".join(f"- {capability}" for capability in definition.capabilities)
    instructions = "\n".join(f"- {line}" for line in ROLE_INSTRUCTIONS)
    return (
        f"# Role: {definition.title}\n\n"
        f"{definition.description}\n\n"
        f"## Your Goal\n{definition.goal}\n\n"
        f"## Your Backstory\n{definition.backstory}\n\n"
        f"## Your Capabilities\n{capabilities}\n\n"
        f"## Instructions\n{instructions}"
    )


def excerpt(text: str, limit: int = DEFAULT_EXCERPT_CHARS) -> str:
    """First `limit` characters of text, with an ellipsis when truncated."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_task_prompt(
    role: str,
    task: str,
    previous_output: str | None = None,
    chain_context: Mapping[str, str] | None = None,
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """
    Build the task prompt for a role.

    The previous role's output is included verbatim; every earlier role's
    output also appears as a bounded excerpt under "Chain Context".
    """
    parts = [f"# Task\n{task}\n\n"]

    if previous_output:
        parts.append(f"# Previous Agent Output\n{previous_output}\n\n")

    if chain_context:
        parts.append("# Chain Context\n")
        for context_role, output in chain_context.items():
            parts.append(f"\n## {context_role}\n{excerpt(output, excerpt_chars)}\n")

    parts.append(
        f"\n# Your Task as {role}\n"
        "Perform your role's responsibilities on the above task. "
        "Provide clear output that the next agent can build upon."
    )
    return "".join(parts)


__all__ = [
    "DEFAULT_EXCERPT_CHARS",
    "ROLE_INSTRUCTIONS",
    "build_system_prompt",
    "build_task_prompt",
    "excerpt",
    "generic_system_prompt",
]
