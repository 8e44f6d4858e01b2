"""
Model capability catalog, task requirements and chain templates.

Static tables loaded at import and never mutated. The selector and the
orchestrator only read them.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from .types import (
    Capability,
    ChainTemplate,
    ModelProfile,
    Pricing,
    TaskRequirement,
    Tier,
)

_DIMENSIONS = (
    Capability.REASONING,
    Capability.PLANNING,
    Capability.CODE_GENERATION,
    Capability.CODE_REVIEW,
    Capability.DOCUMENTATION,
    Capability.RESEARCH,
    Capability.CREATIVITY,
    Capability.SPEED,
    Capability.COST_EFFICIENCY,
)


def _ratings(*values: int) -> Mapping[Capability, int]:
    """Ratings in dimension order: reasoning, planning, code_generation,
    code_review, documentation, research, creativity, speed, cost_efficiency."""
    if len(values) != len(_DIMENSIONS):
        raise ValueError(f"Expected {len(_DIMENSIONS)} ratings, got {len(values)}")
    return MappingProxyType(dict(zip(_DIMENSIONS, values)))


def _profile(
    model_id: str,
    name: str,
    ratings: Mapping[Capability, int],
    pricing: tuple[float, float],
    context_window: int,
    min_tier: Tier,
    strengths: tuple[str, ...] = (),
    weaknesses: tuple[str, ...] = (),
    best_for: tuple[str, ...] = (),
    not_recommended_for: tuple[str, ...] = (),
) -> ModelProfile:
    return ModelProfile(
        model_id=model_id,
        provider=model_id.split("/", 1)[0],
        name=name,
        capabilities=ratings,
        pricing=Pricing(input=pricing[0], output=pricing[1]),
        context_window=context_window,
        min_tier=min_tier,
        strengths=strengths,
        weaknesses=weaknesses,
        best_for=best_for,
        not_recommended_for=not_recommended_for,
    )


_PROFILES = [
    # OpenAI
    _profile(
        "openai/o1",
        "OpenAI o1",
        _ratings(10, 10, 7, 9, 8, 9, 8, 3, 2),
        (15.0, 60.0),
        128_000,
        Tier.PRO_PLUS,
        strengths=("deep reasoning", "multi-step planning", "math"),
        weaknesses=("slow", "expensive"),
        best_for=("planning", "architecture", "debugging"),
        not_recommended_for=("simple-task", "documentation"),
    ),
    _profile(
        "openai/o1-mini",
        "OpenAI o1-mini",
        _ratings(9, 9, 8, 8, 7, 7, 6, 6, 5),
        (3.0, 12.0),
        128_000,
        Tier.PRO_PLUS,
        strengths=("reasoning", "coding"),
        best_for=("planning", "code-generation", "debugging"),
        not_recommended_for=("research",),
    ),
    _profile(
        "openai/gpt-4-turbo",
        "GPT-4 Turbo",
        _ratings(9, 9, 8, 9, 9, 8, 9, 6, 4),
        (10.0, 30.0),
        128_000,
        Tier.PRO,
        strengths=("broad knowledge", "instruction following"),
        weaknesses=("cost",),
        best_for=("code-review", "documentation", "planning"),
        not_recommended_for=("simple-task",),
    ),
    _profile(
        "openai/gpt-3.5-turbo",
        "GPT-3.5 Turbo",
        _ratings(6, 6, 7, 6, 7, 6, 7, 9, 9),
        (0.5, 1.5),
        16_385,
        Tier.FREE,
        strengths=("fast", "cheap"),
        weaknesses=("shallow reasoning", "small context"),
        best_for=("simple-task",),
        not_recommended_for=("architecture", "code-review"),
    ),
    # Anthropic
    _profile(
        "anthropic/claude-3-opus",
        "Claude 3 Opus",
        _ratings(9, 9, 8, 10, 10, 9, 9, 5, 3),
        (15.0, 75.0),
        200_000,
        Tier.PRO_PLUS,
        strengths=("careful review", "long-form writing", "nuance"),
        weaknesses=("slow", "expensive"),
        best_for=("code-review", "documentation", "research"),
        not_recommended_for=("simple-task",),
    ),
    _profile(
        "anthropic/claude-3.5-sonnet",
        "Claude 3.5 Sonnet",
        _ratings(8, 8, 9, 9, 9, 8, 8, 7, 7),
        (3.0, 15.0),
        200_000,
        Tier.PRO,
        strengths=("coding", "code review", "large context"),
        best_for=("code-generation", "code-review", "refactoring"),
    ),
    _profile(
        "anthropic/claude-3-haiku",
        "Claude 3 Haiku",
        _ratings(7, 6, 7, 7, 7, 6, 7, 9, 9),
        (0.25, 1.25),
        200_000,
        Tier.PRO,
        strengths=("fast", "cheap", "large context"),
        weaknesses=("limited depth",),
        best_for=("simple-task", "documentation"),
        not_recommended_for=("architecture",),
    ),
    # DeepSeek / Qwen
    _profile(
        "deepseek/qwen-3-480b-coder",
        "Qwen 3 Coder 480B",
        _ratings(7, 6, 10, 7, 6, 5, 7, 8, 9),
        (2.0, 6.0),
        32_768,
        Tier.PRO,
        strengths=("code generation",),
        weaknesses=("planning", "research"),
        best_for=("code-generation", "refactoring", "testing"),
        not_recommended_for=("research", "planning"),
    ),
    _profile(
        "deepseek/deepseek-chat",
        "DeepSeek Chat",
        _ratings(8, 7, 9, 8, 7, 7, 7, 7, 9),
        (0.27, 1.10),
        64_000,
        Tier.FREE,
        strengths=("coding", "price/performance"),
        best_for=("code-generation", "code-review", "debugging"),
        not_recommended_for=("research",),
    ),
    # Google
    _profile(
        "google/gemini-pro-1.5",
        "Gemini 1.5 Pro",
        _ratings(8, 7, 8, 7, 9, 9, 8, 7, 8),
        (1.25, 5.0),
        1_000_000,
        Tier.PRO,
        strengths=("huge context", "research", "documentation"),
        best_for=("research", "documentation"),
        not_recommended_for=("simple-task",),
    ),
    _profile(
        "google/gemini-2.0-flash-exp",
        "Gemini 2.0 Flash",
        _ratings(7, 7, 7, 7, 8, 8, 7, 9, 10),
        (0.10, 0.40),
        1_000_000,
        Tier.FREE,
        strengths=("fast", "cheap", "huge context"),
        best_for=("research", "simple-task", "documentation"),
        not_recommended_for=("code-review",),
    ),
    # Groq-hosted Llama
    _profile(
        "groq/llama-3.1-70b-versatile",
        "Llama 3.1 70B (Groq)",
        _ratings(7, 6, 8, 6, 7, 6, 7, 10, 10),
        (0.59, 0.79),
        131_072,
        Tier.FREE,
        strengths=("very fast", "cheap"),
        best_for=("simple-task", "code-generation"),
        not_recommended_for=("architecture", "code-review"),
    ),
    _profile(
        "groq/llama-3.1-8b-instant",
        "Llama 3.1 8B (Groq)",
        _ratings(5, 4, 6, 5, 6, 5, 6, 10, 10),
        (0.05, 0.08),
        8_192,
        Tier.FREE,
        strengths=("instant responses",),
        weaknesses=("weak reasoning",),
        best_for=("simple-task",),
        not_recommended_for=("planning", "architecture", "code-review"),
    ),
    _profile(
        "meta-llama/llama-3.3-70b-instruct",
        "Llama 3.3 70B Instruct",
        _ratings(8, 7, 8, 7, 7, 7, 7, 8, 10),
        (0.13, 0.40),
        131_072,
        Tier.FREE,
        strengths=("cheap", "solid all-rounder"),
        best_for=("planning", "code-generation", "simple-task"),
        not_recommended_for=("architecture",),
    ),
]

MODEL_CATALOG: Mapping[str, ModelProfile] = MappingProxyType(
    {profile.model_id: profile for profile in _PROFILES}
)


def _requirement(
    task_type: str, primary: Capability, secondary: tuple[Capability, ...], minimum: int
) -> TaskRequirement:
    return TaskRequirement(task_type=task_type, primary=primary, secondary=secondary, minimum=minimum)


DEFAULT_REQUIREMENT = _requirement("default", Capability.REASONING, (), 6)

TASK_REQUIREMENTS: Mapping[str, TaskRequirement] = MappingProxyType(
    {
        req.task_type: req
        for req in [
            _requirement("planning", Capability.PLANNING, (Capability.REASONING,), 7),
            _requirement(
                "architecture",
                Capability.PLANNING,
                (Capability.REASONING, Capability.CODE_GENERATION),
                8,
            ),
            _requirement("code-generation", Capability.CODE_GENERATION, (Capability.REASONING,), 7),
            _requirement(
                "code-review",
                Capability.CODE_REVIEW,
                (Capability.REASONING, Capability.CODE_GENERATION),
                8,
            ),
            _requirement("documentation", Capability.DOCUMENTATION, (Capability.CODE_GENERATION,), 7),
            _requirement("research", Capability.RESEARCH, (Capability.REASONING,), 7),
            _requirement(
                "refactoring",
                Capability.CODE_GENERATION,
                (Capability.CODE_REVIEW, Capability.REASONING),
                7,
            ),
            _requirement(
                "debugging",
                Capability.REASONING,
                (Capability.CODE_GENERATION, Capability.CODE_REVIEW),
                7,
            ),
            _requirement(
                "testing",
                Capability.CODE_GENERATION,
                (Capability.CODE_REVIEW, Capability.REASONING),
                7,
            ),
            _requirement("simple-task", Capability.SPEED, (Capability.COST_EFFICIENCY,), 5),
            DEFAULT_REQUIREMENT,
        ]
    }
)


def _template(
    template_id: str,
    name: str,
    description: str,
    roles: dict[str, str],
    estimated_cost: str,
    estimated_speed: str,
) -> ChainTemplate:
    return ChainTemplate(
        template_id=template_id,
        name=name,
        description=description,
        roles=MappingProxyType(roles),
        estimated_cost=estimated_cost,
        estimated_speed=estimated_speed,
    )


CHAIN_TEMPLATES: Mapping[str, ChainTemplate] = MappingProxyType(
    {
        template.template_id: template
        for template in [
            _template(
                "coding-standard",
                "Standard Coding",
                "Balanced plan, build and review pipeline",
                {
                    "planner": "anthropic/claude-3.5-sonnet",
                    "builder": "deepseek/qwen-3-480b-coder",
                    "reviewer": "anthropic/claude-3.5-sonnet",
                },
                "medium",
                "medium",
            ),
            _template(
                "coding-premium",
                "Premium Coding",
                "Strongest models for every stage, including documentation",
                {
                    "planner": "openai/o1",
                    "builder": "anthropic/claude-3.5-sonnet",
                    "reviewer": "anthropic/claude-3-opus",
                    "documenter": "google/gemini-pro-1.5",
                },
                "high",
                "slow",
            ),
            _template(
                "coding-budget",
                "Budget Coding",
                "Cheap and fast models for routine changes",
                {
                    "planner": "groq/llama-3.1-70b-versatile",
                    "builder": "deepseek/qwen-3-480b-coder",
                    "reviewer": "groq/llama-3.1-70b-versatile",
                },
                "low",
                "fast",
            ),
            _template(
                "research-deep",
                "Deep Research",
                "Long-context research followed by analysis and a written report",
                {
                    "researcher": "google/gemini-pro-1.5",
                    "analyst": "openai/o1",
                    "documenter": "anthropic/claude-3-opus",
                },
                "high",
                "slow",
            ),
            _template(
                "review-comprehensive",
                "Comprehensive Review",
                "Thorough code review with analysis and a summary",
                {
                    "reviewer": "anthropic/claude-3-opus",
                    "analyst": "openai/gpt-4-turbo",
                    "documenter": "anthropic/claude-3.5-sonnet",
                },
                "high",
                "medium",
            ),
            _template(
                "quick-fix",
                "Quick Fix",
                "Fast debug and patch for small issues",
                {
                    "debugger": "groq/llama-3.1-70b-versatile",
                    "builder": "groq/llama-3.1-70b-versatile",
                },
                "very-low",
                "very-fast",
            ),
        ]
    }
)


def get_model(model_id: str) -> ModelProfile | None:
    """Look up a model profile by id."""
    return MODEL_CATALOG.get(model_id)


def get_task_requirement(task_type: str | None) -> TaskRequirement:
    """Requirement for a task type, falling back to the default requirement."""
    if task_type is None:
        return DEFAULT_REQUIREMENT
    return TASK_REQUIREMENTS.get(task_type, DEFAULT_REQUIREMENT)


def is_authorized(model: ModelProfile, tier: Tier | str) -> bool:
    """Whether a subscription tier may use a model."""
    return Tier(tier).rank >= model.min_tier.rank


def get_models_for_tier(tier: Tier | str) -> list[ModelProfile]:
    """All models a tier may use, in catalog order."""
    return [model for model in MODEL_CATALOG.values() if is_authorized(model, tier)]


def get_best_models_for_task(task_type: str, tier: Tier | str, limit: int = 3) -> list[ModelProfile]:
    """Authorized models ranked by their raw score on the task's primary dimension."""
    requirement = get_task_requirement(task_type)
    ranked = sorted(
        get_models_for_tier(tier),
        key=lambda model: (-model.score(requirement.primary), model.model_id),
    )
    return ranked[:limit]


__all__ = [
    "CHAIN_TEMPLATES",
    "DEFAULT_REQUIREMENT",
    "MODEL_CATALOG",
    "TASK_REQUIREMENTS",
    "get_best_models_for_task",
    "get_model",
    "get_models_for_tier",
    "get_task_requirement",
    "is_authorized",
]
