"""
Shared type definitions for modelchain.

Enums for the configuration surface (tier, budget, strategy, mode, status),
the immutable catalog records, the resolved chain plan and results, and the
error hierarchy used across the package.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, Field


class Tier(str, Enum):
    """Subscription tier."""

    FREE = "free"
    PRO = "pro"
    PRO_PLUS = "pro-plus"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER: list[Tier] = [Tier.FREE, Tier.PRO, Tier.PRO_PLUS, Tier.ENTERPRISE]


class Budget(str, Enum):
    """Coarse cost target for a chain."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNLIMITED = "unlimited"


class Strategy(str, Enum):
    """Prioritization strategy used to weight the selection score."""

    QUALITY = "quality"
    BALANCED = "balanced"
    COST = "cost"


class ChainMode(str, Enum):
    """How the role->model map of a chain is resolved."""

    AUTO = "auto"
    MANUAL = "manual"
    TEMPLATE = "template"


class ChainStatus(str, Enum):
    """Lifecycle status of a chain."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not ChainStatus.RUNNING


class Capability(str, Enum):
    """Scored capability dimensions (0-10)."""

    REASONING = "reasoning"
    PLANNING = "planning"
    CODE_GENERATION = "code_generation"
    CODE_REVIEW = "code_review"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"
    CREATIVITY = "creativity"
    SPEED = "speed"
    COST_EFFICIENCY = "cost_efficiency"


# ============================================================================
# Catalog records
# ============================================================================


@dataclass(frozen=True)
class Pricing:
    """USD per million tokens."""

    input: float
    output: float

    @property
    def average(self) -> float:
        return (self.input + self.output) / 2


@dataclass(frozen=True)
class ModelProfile:
    """A known model with its capability ratings and pricing."""

    model_id: str
    provider: str
    name: str
    capabilities: Mapping[Capability, int]
    pricing: Pricing
    context_window: int
    min_tier: Tier
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    best_for: tuple[str, ...] = ()
    not_recommended_for: tuple[str, ...] = ()

    def score(self, dimension: Capability) -> int:
        """Rating for a dimension (0 when unrated)."""
        return self.capabilities.get(dimension, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_id": self.model_id,
            "provider": self.provider,
            "name": self.name,
            "capabilities": {dim.value: value for dim, value in self.capabilities.items()},
            "pricing": asdict(self.pricing),
            "context_window": self.context_window,
            "min_tier": self.min_tier.value,
            "best_for": list(self.best_for),
            "not_recommended_for": list(self.not_recommended_for),
        }


@dataclass(frozen=True)
class TaskRequirement:
    """Which capability matters most for a task type."""

    task_type: str
    primary: Capability
    secondary: tuple[Capability, ...] = ()
    minimum: int = 6


@dataclass(frozen=True)
class RoleDefinition:
    """A pipeline stage and the capability profile it needs."""

    name: str
    title: str
    description: str
    goal: str
    backstory: str
    capabilities: tuple[str, ...]
    primary: Capability
    secondary: tuple[Capability, ...]
    min_score: float
    preferred_models: Mapping[Strategy, tuple[str, ...]]
    min_tier: Tier = Tier.FREE

    def preference_rank(self, model_id: str, strategy: Strategy) -> int:
        """Position in the preferred list for a strategy; unlisted models rank last."""
        preferred = self.preferred_models.get(strategy, ())
        if model_id in preferred:
            return preferred.index(model_id)
        return len(preferred)


@dataclass(frozen=True)
class ChainTemplate:
    """A named, pre-configured role->model preset."""

    template_id: str
    name: str
    description: str
    roles: Mapping[str, str]
    estimated_cost: str
    estimated_speed: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.template_id,
            "name": self.name,
            "description": self.description,
            "roles": dict(self.roles),
            "estimated_cost": self.estimated_cost,
            "estimated_speed": self.estimated_speed,
        }


# ============================================================================
# Selection results
# ============================================================================


@dataclass(frozen=True, order=True)
class CostRange:
    """Low/medium/high USD estimate for running a chain once."""

    low: float
    medium: float
    high: float

    def __add__(self, other: CostRange) -> CostRange:
        return CostRange(
            low=self.low + other.low,
            medium=self.medium + other.medium,
            high=self.high + other.high,
        )

    def to_dict(self) -> dict[str, float]:
        return {"low": round(self.low, 6), "medium": round(self.medium, 6), "high": round(self.high, 6)}


class SelectionResult(BaseModel):
    """Outcome of picking a model for one role."""

    model_id: str
    score: float
    reasoning: str
    role: str
    task_type: str
    strategy: Strategy
    alternatives: list[tuple[str, float]] = Field(default_factory=list)


@dataclass
class ChainSelection:
    """Role->model map resolved for a chain type."""

    chain: dict[str, str]
    roles: dict[str, str | None]
    strategy: Strategy
    estimated_cost: CostRange
    cost_category: str
    breakdown: list[dict[str, Any]] = field(default_factory=list)


# ============================================================================
# Chain execution
# ============================================================================


class ChainRequest(BaseModel):
    """Input to ChainOrchestrator.execute_chain."""

    task: str = Field(min_length=1)
    mode: ChainMode = ChainMode.AUTO
    tier: Tier = Tier.PRO
    chain_type: str = "coding"
    template: str | None = None
    models: dict[str, str] | None = None
    budget: Budget = Budget.MEDIUM
    prioritize: Strategy | None = None


@dataclass(frozen=True)
class ChainPlan:
    """The resolved role->model assignment for one chain execution."""

    mode: ChainMode
    roles: tuple[str, ...]
    models: Mapping[str, str]
    template: str | None = None
    strategy: Strategy | None = None
    estimated_cost: CostRange | None = None
    cost_category: str | None = None
    breakdown: tuple[dict[str, Any], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "models", MappingProxyType(dict(self.models)))

    def model_for(self, role: str) -> str:
        return self.models[role]

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "roles": list(self.roles),
            "models": dict(self.models),
            "template": self.template,
            "strategy": self.strategy.value if self.strategy else None,
            "estimated_cost": self.estimated_cost.to_dict() if self.estimated_cost else None,
            "cost_category": self.cost_category,
            "breakdown": [dict(entry) for entry in self.breakdown],
        }


@dataclass
class RoleResult:
    """Outcome of running one role of a chain."""

    role: str
    model: str
    output: str
    duration_ms: float
    timestamp: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    status: str = "completed"
    error: str | None = None

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tokens_used"] = self.tokens_used
        return data


@dataclass
class ChainResult:
    """What execute_chain hands back to the caller."""

    chain_id: str
    success: bool
    status: ChainStatus
    plan: ChainPlan | None
    results: dict[str, RoleResult] = field(default_factory=dict)
    duration_ms: float = 0.0
    cost: float = 0.0
    error: str | None = None
    failure: ModelChainError | None = None

    def raise_for_status(self) -> None:
        """Re-raise the failure that ended the chain, if any."""
        if self.failure is not None:
            raise self.failure

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "success": self.success,
            "status": self.status.value,
            "config": self.plan.to_dict() if self.plan else None,
            "results": {role: result.to_dict() for role, result in self.results.items()},
            "duration_ms": self.duration_ms,
            "cost": self.cost,
            "error": self.error,
        }


@dataclass
class InvocationResult:
    """Generated text plus usage from one model call."""

    text: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    latency_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


# ============================================================================
# Errors
# ============================================================================


class ModelChainError(Exception):
    """Base class for modelchain errors."""

    pass


class ConfigurationError(ModelChainError):
    """A request that cannot be resolved into a chain plan."""

    pass


class UnknownRoleError(ConfigurationError):
    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Unknown role '{role}'")


class UnknownChainTypeError(ConfigurationError):
    def __init__(self, chain_type: str):
        self.chain_type = chain_type
        super().__init__(f"Unknown chain type '{chain_type}'")


class TemplateNotFoundError(ConfigurationError):
    def __init__(self, template: str):
        self.template = template
        super().__init__(f"Template '{template}' not found")


class MissingModelMapError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Manual mode requires a role->model map")


class NoEligibleModelError(ModelChainError):
    """No model passed the tier and minimum-score filters for a role."""

    def __init__(self, task_type: str, role: str, tier: Tier | str):
        self.task_type = task_type
        self.role = role
        self.tier = Tier(tier)
        super().__init__(
            f"No eligible model for task '{task_type}' as role '{role}' on tier '{self.tier.value}'"
        )


class InvocationError(ModelChainError):
    """A model call failed."""

    retryable = False

    def __init__(self, model_id: str, message: str):
        self.model_id = model_id
        super().__init__(f"{model_id}: {message}")


class ProviderRejectedError(InvocationError):
    """The provider refused the request; retrying the same call will not help."""

    retryable = False

    def __init__(self, model_id: str, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(model_id, message)


class ProviderUnavailableError(InvocationError):
    """Network failure, rate limit or server error."""

    retryable = True

    def __init__(self, model_id: str, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(model_id, message)


class InvocationTimeoutError(ProviderUnavailableError):
    def __init__(self, model_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(model_id, f"timed out after {timeout:g}s")


class RoleExecutionError(ModelChainError):
    """A role of a running chain failed; the chain was aborted."""

    def __init__(self, chain_id: str, role: str, model_id: str, cause: BaseException):
        self.chain_id = chain_id
        self.role = role
        self.model_id = model_id
        self.cause = cause
        self.retryable = bool(getattr(cause, "retryable", False))
        super().__init__(f"Role {role} failed on model {model_id}: {cause}")


class ChainCancelledError(ModelChainError):
    """The chain was stopped while a role was running."""

    def __init__(self, chain_id: str, role: str | None = None):
        self.chain_id = chain_id
        self.role = role
        where = f" during role {role}" if role else ""
        super().__init__(f"Chain {chain_id} cancelled{where}")


__all__ = [
    "Budget",
    "Capability",
    "ChainCancelledError",
    "ChainMode",
    "ChainPlan",
    "ChainRequest",
    "ChainResult",
    "ChainSelection",
    "ChainStatus",
    "ChainTemplate",
    "ConfigurationError",
    "CostRange",
    "InvocationError",
    "InvocationResult",
    "InvocationTimeoutError",
    "MissingModelMapError",
    "ModelChainError",
    "ModelProfile",
    "NoEligibleModelError",
    "Pricing",
    "ProviderRejectedError",
    "ProviderUnavailableError",
    "RoleDefinition",
    "RoleExecutionError",
    "RoleResult",
    "SelectionResult",
    "Strategy",
    "TIER_ORDER",
    "TaskRequirement",
    "TemplateNotFoundError",
    "Tier",
    "UnknownChainTypeError",
    "UnknownRoleError",
]
