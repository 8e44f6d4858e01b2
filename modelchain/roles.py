"""
Role catalog: pipeline roles, chain types and tier line-ups.

A role names a stage of a chain (planner, builder, reviewer, ...) together
with the capability profile it needs and the models it prefers under each
prioritization strategy.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from .types import Capability, RoleDefinition, Strategy, Tier, UnknownRoleError


def _prefs(
    quality: tuple[str, ...], balanced: tuple[str, ...], cost: tuple[str, ...]
) -> Mapping[Strategy, tuple[str, ...]]:
    return MappingProxyType(
        {Strategy.QUALITY: quality, Strategy.BALANCED: balanced, Strategy.COST: cost}
    )


_ROLES = [
    RoleDefinition(
        name="analyst",
        title="Requirements Analyst",
        description="Breaks a request down into concrete requirements and constraints",
        goal="Produce an unambiguous list of requirements, risks and acceptance criteria",
        backstory="A seasoned analyst who has seen many projects fail on vague requirements.",
        capabilities=("requirements analysis", "risk identification", "scope definition"),
        primary=Capability.REASONING,
        secondary=(Capability.PLANNING,),
        min_score=7.0,
        preferred_models=_prefs(
            ("openai/o1", "anthropic/claude-3-opus", "openai/gpt-4-turbo"),
            ("anthropic/claude-3.5-sonnet", "google/gemini-pro-1.5", "deepseek/deepseek-chat"),
            ("meta-llama/llama-3.3-70b-instruct", "deepseek/deepseek-chat", "google/gemini-2.0-flash-exp"),
        ),
        min_tier=Tier.PRO_PLUS,
    ),
    RoleDefinition(
        name="researcher",
        title="Technical Researcher",
        description="Gathers background on libraries, APIs and prior art relevant to the task",
        goal="Surface the facts and references the rest of the chain needs",
        backstory="A meticulous researcher who always cites sources and flags uncertainty.",
        capabilities=("documentation lookup", "API research", "comparing alternatives"),
        primary=Capability.RESEARCH,
        secondary=(Capability.REASONING,),
        min_score=6.5,
        preferred_models=_prefs(
            ("google/gemini-pro-1.5", "anthropic/claude-3-opus", "openai/o1"),
            ("google/gemini-pro-1.5", "google/gemini-2.0-flash-exp", "anthropic/claude-3.5-sonnet"),
            ("google/gemini-2.0-flash-exp", "meta-llama/llama-3.3-70b-instruct", "deepseek/deepseek-chat"),
        ),
    ),
    RoleDefinition(
        name="architect",
        title="Software Architect",
        description="Designs the structure of the solution: components, interfaces and data flow",
        goal="Deliver a design that is simple, extensible and fits the existing codebase",
        backstory="An architect who values boring technology and clear boundaries.",
        capabilities=("system design", "interface design", "trade-off analysis"),
        primary=Capability.PLANNING,
        secondary=(Capability.REASONING, Capability.CODE_GENERATION),
        min_score=7.5,
        preferred_models=_prefs(
            ("openai/o1", "anthropic/claude-3-opus", "openai/gpt-4-turbo"),
            ("anthropic/claude-3.5-sonnet", "openai/o1-mini", "openai/gpt-4-turbo"),
            ("deepseek/deepseek-chat", "meta-llama/llama-3.3-70b-instruct", "anthropic/claude-3.5-sonnet"),
        ),
        min_tier=Tier.ENTERPRISE,
    ),
    RoleDefinition(
        name="planner",
        title="Implementation Planner",
        description="Turns the task into an ordered, step-by-step implementation plan",
        goal="Write a plan the builder can follow without guessing",
        backstory="A pragmatic tech lead who splits work into small verifiable steps.",
        capabilities=("task decomposition", "dependency ordering", "estimation"),
        primary=Capability.PLANNING,
        secondary=(Capability.REASONING,),
        min_score=7.0,
        preferred_models=_prefs(
            ("openai/o1", "anthropic/claude-3.5-sonnet", "deepseek/deepseek-chat"),
            ("anthropic/claude-3.5-sonnet", "openai/o1-mini", "meta-llama/llama-3.3-70b-instruct"),
            ("meta-llama/llama-3.3-70b-instruct", "deepseek/deepseek-chat", "google/gemini-2.0-flash-exp"),
        ),
        min_tier=Tier.PRO,
    ),
    RoleDefinition(
        name="coder",
        title="Software Engineer",
        description="Writes the code that implements the plan",
        goal="Produce correct, idiomatic, complete code",
        backstory="A senior engineer who writes code that reviewers enjoy reading.",
        capabilities=("code generation", "refactoring", "API usage"),
        primary=Capability.CODE_GENERATION,
        secondary=(Capability.REASONING,),
        min_score=7.0,
        preferred_models=_prefs(
            ("anthropic/claude-3.5-sonnet", "deepseek/qwen-3-480b-coder", "openai/o1-mini"),
            ("deepseek/qwen-3-480b-coder", "deepseek/deepseek-chat", "anthropic/claude-3.5-sonnet"),
            ("deepseek/deepseek-chat", "meta-llama/llama-3.3-70b-instruct", "groq/llama-3.1-70b-versatile"),
        ),
    ),
    RoleDefinition(
        name="tester",
        title="Test Engineer",
        description="Writes tests that pin down the behaviour of the new code",
        goal="Cover the main paths and the edge cases with fast, deterministic tests",
        backstory="A test engineer who trusts nothing that has not been exercised.",
        capabilities=("unit testing", "edge-case discovery", "test fixtures"),
        primary=Capability.CODE_GENERATION,
        secondary=(Capability.CODE_REVIEW, Capability.REASONING),
        min_score=6.5,
        preferred_models=_prefs(
            ("anthropic/claude-3.5-sonnet", "openai/gpt-4-turbo", "deepseek/qwen-3-480b-coder"),
            ("deepseek/qwen-3-480b-coder", "anthropic/claude-3.5-sonnet", "deepseek/deepseek-chat"),
            ("deepseek/deepseek-chat", "meta-llama/llama-3.3-70b-instruct", "groq/llama-3.1-70b-versatile"),
        ),
        min_tier=Tier.ENTERPRISE,
    ),
    RoleDefinition(
        name="reviewer",
        title="Code Reviewer",
        description="Reviews the produced code for bugs, style problems and missed requirements",
        goal="Catch defects before they ship and suggest concrete fixes",
        backstory="A thorough reviewer known for finding the bug everyone else missed.",
        capabilities=("code review", "bug detection", "security review"),
        primary=Capability.CODE_REVIEW,
        secondary=(Capability.REASONING, Capability.CODE_GENERATION),
        min_score=7.5,
        preferred_models=_prefs(
            ("anthropic/claude-3.5-sonnet", "anthropic/claude-3-opus", "openai/gpt-4-turbo"),
            ("anthropic/claude-3.5-sonnet", "openai/gpt-4-turbo", "deepseek/deepseek-chat"),
            ("deepseek/deepseek-chat", "anthropic/claude-3-haiku", "meta-llama/llama-3.3-70b-instruct"),
        ),
        min_tier=Tier.PRO,
    ),
    RoleDefinition(
        name="optimizer",
        title="Performance Engineer",
        description="Improves performance and resource usage of existing code",
        goal="Make the code measurably faster or leaner without changing behaviour",
        backstory="An engineer who profiles before optimizing.",
        capabilities=("profiling", "algorithmic optimization", "refactoring"),
        primary=Capability.CODE_GENERATION,
        secondary=(Capability.REASONING, Capability.CODE_REVIEW),
        min_score=7.0,
        preferred_models=_prefs(
            ("openai/o1-mini", "anthropic/claude-3.5-sonnet", "deepseek/qwen-3-480b-coder"),
            ("deepseek/qwen-3-480b-coder", "anthropic/claude-3.5-sonnet", "deepseek/deepseek-chat"),
            ("deepseek/deepseek-chat", "meta-llama/llama-3.3-70b-instruct", "groq/llama-3.1-70b-versatile"),
        ),
        min_tier=Tier.PRO_PLUS,
    ),
    RoleDefinition(
        name="debugger",
        title="Debugging Specialist",
        description="Finds the root cause of a failure and proposes a fix",
        goal="Explain why the bug happens and how to fix it safely",
        backstory="A debugger who reads stack traces like prose.",
        capabilities=("root-cause analysis", "log reading", "minimal reproduction"),
        primary=Capability.REASONING,
        secondary=(Capability.CODE_GENERATION, Capability.CODE_REVIEW),
        min_score=7.0,
        preferred_models=_prefs(
            ("openai/o1", "anthropic/claude-3.5-sonnet", "openai/o1-mini"),
            ("anthropic/claude-3.5-sonnet", "deepseek/deepseek-chat", "openai/o1-mini"),
            ("deepseek/deepseek-chat", "meta-llama/llama-3.3-70b-instruct", "groq/llama-3.1-70b-versatile"),
        ),
        min_tier=Tier.ENTERPRISE,
    ),
    RoleDefinition(
        name="documenter",
        title="Technical Writer",
        description="Documents the change: usage, API reference and a summary of decisions",
        goal="Leave documentation that a newcomer can follow",
        backstory="A technical writer who turns engineering notes into clear prose.",
        capabilities=("API documentation", "summaries", "examples"),
        primary=Capability.DOCUMENTATION,
        secondary=(Capability.CODE_GENERATION,),
        min_score=6.5,
        preferred_models=_prefs(
            ("anthropic/claude-3-opus", "openai/gpt-4-turbo", "google/gemini-pro-1.5"),
            ("google/gemini-pro-1.5", "anthropic/claude-3.5-sonnet", "google/gemini-2.0-flash-exp"),
            ("google/gemini-2.0-flash-exp", "anthropic/claude-3-haiku", "meta-llama/llama-3.3-70b-instruct"),
        ),
        min_tier=Tier.ENTERPRISE,
    ),
]

ROLE_DEFINITIONS: Mapping[str, RoleDefinition] = MappingProxyType(
    {role.name: role for role in _ROLES}
)

# Chain role names that share another role's profile
ROLE_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "builder": "coder",
        "fixer": "debugger",
        "synthesizer": "documenter",
        "analyzer": "analyst",
    }
)

# Chain type -> ordered role -> task type
CHAIN_TYPES: Mapping[str, Mapping[str, str]] = MappingProxyType(
    {
        "coding": MappingProxyType(
            {"planner": "planning", "builder": "code-generation", "reviewer": "code-review"}
        ),
        "coding-full": MappingProxyType(
            {
                "analyst": "planning",
                "planner": "planning",
                "builder": "code-generation",
                "reviewer": "code-review",
                "documenter": "documentation",
            }
        ),
        "research": MappingProxyType(
            {"researcher": "research", "analyst": "planning", "documenter": "documentation"}
        ),
        "debugging": MappingProxyType({"debugger": "debugging", "reviewer": "code-review"}),
        "optimization": MappingProxyType(
            {"analyst": "planning", "optimizer": "refactoring", "reviewer": "code-review"}
        ),
    }
)

TIER_AGENT_CONFIGS: Mapping[Tier, tuple[str, ...]] = MappingProxyType(
    {
        Tier.FREE: ("researcher", "coder"),
        Tier.PRO: ("researcher", "planner", "coder", "reviewer"),
        Tier.PRO_PLUS: ("analyst", "researcher", "planner", "coder", "reviewer", "optimizer"),
        Tier.ENTERPRISE: (
            "analyst",
            "researcher",
            "architect",
            "planner",
            "coder",
            "tester",
            "reviewer",
            "optimizer",
            "debugger",
            "documenter",
        ),
    }
)

# Keywords that suggest a role is useful for a free-text task
_ROLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "researcher": ("research", "investigate", "compare", "find out", "documentation for"),
    "analyst": ("requirement", "analyze", "analyse", "scope"),
    "architect": ("architecture", "design", "structure", "system"),
    "planner": ("plan", "steps", "roadmap", "migrate"),
    "coder": ("implement", "build", "write", "add", "create", "feature"),
    "tester": ("test", "coverage", "spec"),
    "reviewer": ("review", "audit", "check", "security"),
    "optimizer": ("optimize", "optimise", "performance", "faster", "slow", "memory"),
    "debugger": ("bug", "fix", "error", "crash", "debug", "broken", "fails"),
    "documenter": ("document", "readme", "docs", "explain"),
}


def canonical_role(name: str) -> str:
    """Resolve an alias to the role whose profile it uses."""
    return ROLE_ALIASES.get(name, name)


def is_known_role(name: str) -> bool:
    return canonical_role(name) in ROLE_DEFINITIONS


def get_role(name: str) -> RoleDefinition:
    """Role definition for a role name or alias.

    Raises:
        UnknownRoleError: If neither the name nor its alias target is defined.
    """
    role = ROLE_DEFINITIONS.get(canonical_role(name))
    if role is None:
        raise UnknownRoleError(name)
    return role


def get_agents_for_tier(tier: Tier | str) -> list[RoleDefinition]:
    """Roles in a tier's agent line-up."""
    return [ROLE_DEFINITIONS[name] for name in TIER_AGENT_CONFIGS[Tier(tier)]]


def is_role_available_for_tier(role: str, tier: Tier | str) -> bool:
    return canonical_role(role) in TIER_AGENT_CONFIGS[Tier(tier)]


def get_best_roles_for_task(task: str, tier: Tier | str, limit: int = 3) -> list[str]:
    """Rank the tier's roles by keyword matches against a task description.

    Roles without any match keep their line-up order after the matched ones.
    The coder is always included when nothing matches.
    """
    text = task.lower()
    lineup = TIER_AGENT_CONFIGS[Tier(tier)]
    hits = {
        role: sum(1 for keyword in _ROLE_KEYWORDS.get(role, ()) if keyword in text)
        for role in lineup
    }
    matched = sorted(
        (role for role in lineup if hits[role] > 0),
        key=lambda role: (-hits[role], lineup.index(role)),
    )
    if not matched:
        return ["coder"] if "coder" in lineup else list(lineup[:1])
    return matched[:limit]


__all__ = [
    "CHAIN_TYPES",
    "ROLE_ALIASES",
    "ROLE_DEFINITIONS",
    "TIER_AGENT_CONFIGS",
    "canonical_role",
    "get_agents_for_tier",
    "get_best_roles_for_task",
    "get_role",
    "is_known_role",
    "is_role_available_for_tier",
]
