"""
Model selection for chain roles.

Scores every model a tier may use against a task requirement, weighted by
the prioritization strategy, and picks the best one for a role. Selection is
deterministic: ties fall back to the role's preferred-model order and then
to the model id.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping

from .catalog import (
    CHAIN_TEMPLATES,
    get_models_for_tier,
    get_task_requirement,
)
from .cost_tracker import categorize_cost, estimate_chain_cost, estimate_role_cost
from .roles import CHAIN_TYPES, get_role
from .types import (
    Budget,
    Capability,
    ChainSelection,
    ChainTemplate,
    ModelProfile,
    NoEligibleModelError,
    RoleDefinition,
    SelectionResult,
    Strategy,
    TaskRequirement,
    TemplateNotFoundError,
    Tier,
    UnknownChainTypeError,
)

logger = logging.getLogger(__name__)

# (primary, secondary average, cost efficiency)
STRATEGY_WEIGHTS: dict[Strategy, tuple[float, float, float]] = {
    Strategy.QUALITY: (0.6, 0.4, 0.0),
    Strategy.BALANCED: (1 / 3, 1 / 3, 1 / 3),
    Strategy.COST: (0.0, 0.4, 0.6),
}

BUDGET_STRATEGIES: dict[Budget, Strategy] = {
    Budget.LOW: Strategy.COST,
    Budget.MEDIUM: Strategy.BALANCED,
    Budget.HIGH: Strategy.BALANCED,
    Budget.UNLIMITED: Strategy.QUALITY,
}

# Scores are compared after rounding so equal weights tie exactly
_SCORE_PRECISION = 6


def strategy_for_budget(budget: Budget | str) -> Strategy:
    """Budget tag -> prioritization strategy."""
    return BUDGET_STRATEGIES[Budget(budget)]


@dataclass(frozen=True)
class ScoredModel:
    """A model's weighted score and the terms that make it up."""

    model: ModelProfile
    score: float
    primary_score: int
    # (label, raw value, weighted contribution)
    terms: tuple[tuple[str, float, float], ...]

    @property
    def model_id(self) -> str:
        return self.model.model_id

    @property
    def dominant_term(self) -> tuple[str, float, float]:
        return max(self.terms, key=lambda term: term[2])


def score_model(model: ModelProfile, requirement: TaskRequirement, strategy: Strategy) -> ScoredModel:
    """
    Weighted score of a model for a task requirement.

    score = w1 * primary + w2 * avg(secondary) + w3 * cost_efficiency

    With no secondary dimensions the secondary term uses the primary score.
    """
    w_primary, w_secondary, w_cost = STRATEGY_WEIGHTS[strategy]
    primary = model.score(requirement.primary)

    if requirement.secondary:
        secondary = sum(model.score(dim) for dim in requirement.secondary) / len(requirement.secondary)
        secondary_label = "+".join(dim.value for dim in requirement.secondary)
    else:
        secondary = float(primary)
        secondary_label = requirement.primary.value

    cost_efficiency = model.score(Capability.COST_EFFICIENCY)

    terms = (
        (requirement.primary.value, float(primary), w_primary * primary),
        (secondary_label, secondary, w_secondary * secondary),
        ("cost_efficiency", float(cost_efficiency), w_cost * cost_efficiency),
    )
    score = round(sum(term[2] for term in terms), _SCORE_PRECISION)
    return ScoredModel(model=model, score=score, primary_score=primary, terms=terms)


class ModelSelector:
    """
    Pick models for roles and assemble role->model chains.

    Selection itself is pure; the selector only keeps counters for
    get_statistics(), guarded by a lock.
    """

    def __init__(self, alternatives: int = 3):
        """
        Initialize selector.

        Args:
            alternatives: How many runner-up models to report per selection
        """
        self.alternatives = alternatives
        self._lock = threading.Lock()
        self._selection_history: list[dict[str, Any]] = []

    def _requirement_for(self, task_type: str | None, role: RoleDefinition) -> TaskRequirement:
        if task_type is None:
            return TaskRequirement(
                task_type=role.name,
                primary=role.primary,
                secondary=role.secondary,
                minimum=0,
            )
        return get_task_requirement(task_type)

    def _rank(
        self,
        candidates: list[ScoredModel],
        role: RoleDefinition,
        strategy: Strategy,
    ) -> list[ScoredModel]:
        return sorted(
            candidates,
            key=lambda scored: (
                -scored.score,
                role.preference_rank(scored.model_id, strategy),
                scored.model_id,
            ),
        )

    def select_model(
        self,
        task_type: str | None,
        role: str,
        tier: Tier | str = Tier.PRO,
        prioritize: Strategy | str = Strategy.BALANCED,
    ) -> SelectionResult:
        """
        Select the best model for a role.

        Args:
            task_type: Task requirement key; unknown types use the default
                requirement and None uses the role's own capability emphasis
            role: Role name or alias
            tier: Subscription tier, used only to filter models
            prioritize: Weighting strategy

        Returns:
            SelectionResult with the winner, its score and runner-ups

        Raises:
            UnknownRoleError: If the role is not defined
            NoEligibleModelError: If no model passes the tier and score filters
        """
        role_def = get_role(role)
        tier = Tier(tier)
        strategy = Strategy(prioritize)
        requirement = self._requirement_for(task_type, role_def)

        eligible = []
        for model in get_models_for_tier(tier):
            scored = score_model(model, requirement, strategy)
            if scored.primary_score < requirement.minimum:
                continue
            if scored.score < role_def.min_score:
                continue
            eligible.append(scored)

        if not eligible:
            raise NoEligibleModelError(task_type or requirement.task_type, role, tier)

        ranked = self._rank(eligible, role_def, strategy)
        winner = ranked[0]
        runner_up = ranked[1] if len(ranked) > 1 else None

        label, raw, _ = winner.dominant_term
        reasoning = (
            f"{winner.model_id} for {role} ({strategy.value}): {label} {raw:g}/10 dominates, "
            f"score {winner.score:.2f}"
        )
        if runner_up is not None:
            reasoning += f", +{winner.score - runner_up.score:.2f} over {runner_up.model_id}"
        else:
            reasoning += ", only eligible model"

        result = SelectionResult(
            model_id=winner.model_id,
            score=winner.score,
            reasoning=reasoning,
            role=role,
            task_type=requirement.task_type,
            strategy=strategy,
            alternatives=[(alt.model_id, alt.score) for alt in ranked[1 : 1 + self.alternatives]],
        )

        with self._lock:
            self._selection_history.append(
                {
                    "task_type": requirement.task_type,
                    "role": role,
                    "tier": tier.value,
                    "strategy": strategy.value,
                    "model": winner.model_id,
                }
            )

        logger.debug(reasoning)
        return result

    def select_chain(
        self,
        chain_type: str,
        tier: Tier | str = Tier.PRO,
        budget: Budget | str = Budget.MEDIUM,
        custom_roles: Mapping[str, str | None] | None = None,
        prioritize: Strategy | str | None = None,
    ) -> ChainSelection:
        """
        Resolve a role->model map for a chain type.

        Args:
            chain_type: Key of CHAIN_TYPES (ignored when custom_roles is given)
            tier: Subscription tier
            budget: Budget tag, mapped to a strategy
            custom_roles: Ordered role -> task type map replacing the chain type
            prioritize: Explicit strategy overriding the budget mapping

        Raises:
            UnknownChainTypeError: If chain_type is unknown and no custom_roles
        """
        if custom_roles:
            roles = dict(custom_roles)
        elif chain_type in CHAIN_TYPES:
            roles = dict(CHAIN_TYPES[chain_type])
        else:
            raise UnknownChainTypeError(chain_type)

        strategy = Strategy(prioritize) if prioritize is not None else strategy_for_budget(budget)

        chain: dict[str, str] = {}
        breakdown: list[dict[str, Any]] = []
        for role, task_type in roles.items():
            selection = self.select_model(task_type, role, tier, strategy)
            chain[role] = selection.model_id
            breakdown.append(
                {
                    "role": role,
                    "task_type": selection.task_type,
                    "model": selection.model_id,
                    "score": selection.score,
                    "reasoning": selection.reasoning,
                    "estimated_cost": estimate_role_cost(selection.model_id).to_dict(),
                }
            )

        return ChainSelection(
            chain=chain,
            roles=roles,
            strategy=strategy,
            estimated_cost=estimate_chain_cost(chain.values()),
            cost_category=categorize_cost(chain.values()),
            breakdown=breakdown,
        )

    def get_template(self, name: str) -> ChainTemplate:
        """Raises TemplateNotFoundError if the template does not exist."""
        template = CHAIN_TEMPLATES.get(name)
        if template is None:
            raise TemplateNotFoundError(name)
        return template

    def list_templates(self) -> list[ChainTemplate]:
        return list(CHAIN_TEMPLATES.values())

    def get_recommendations(
        self,
        task_type: str,
        tier: Tier | str = Tier.PRO,
        prioritize: Strategy | str = Strategy.BALANCED,
        limit: int = 5,
    ) -> dict[str, Any]:
        """
        Rank every model a tier may use for a task, without threshold filtering.

        Returns:
            Dict with the recommended model and ranked alternatives
        """
        strategy = Strategy(prioritize)
        requirement = get_task_requirement(task_type)
        ranked = sorted(
            (score_model(model, requirement, strategy) for model in get_models_for_tier(tier)),
            key=lambda scored: (-scored.score, scored.model_id),
        )
        entries = [
            {
                "model_id": scored.model_id,
                "name": scored.model.name,
                "score": scored.score,
                "meets_minimum": scored.primary_score >= requirement.minimum,
                "pricing": {"input": scored.model.pricing.input, "output": scored.model.pricing.output},
                "best_for": list(scored.model.best_for),
            }
            for scored in ranked[:limit]
        ]
        return {
            "task_type": requirement.task_type,
            "strategy": strategy.value,
            "recommended": entries[0] if entries else None,
            "alternatives": entries[1:],
        }

    def get_statistics(self) -> dict[str, Any]:
        """Get selection statistics."""
        with self._lock:
            history = list(self._selection_history)

        if not history:
            return {"total_selections": 0}

        by_task_type: dict[str, int] = {}
        by_model: dict[str, int] = {}
        by_strategy: dict[str, int] = {}

        for entry in history:
            by_task_type[entry["task_type"]] = by_task_type.get(entry["task_type"], 0) + 1
            by_model[entry["model"]] = by_model.get(entry["model"], 0) + 1
            by_strategy[entry["strategy"]] = by_strategy.get(entry["strategy"], 0) + 1

        top_models = sorted(by_model.items(), key=lambda item: (-item[1], item[0]))[:5]
        return {
            "total_selections": len(history),
            "by_task_type": by_task_type,
            "by_model": by_model,
            "by_strategy": by_strategy,
            "top_models": [{"model": model, "count": count} for model, count in top_models],
        }


# Global selector instance
_selector: ModelSelector | None = None


def get_model_selector() -> ModelSelector:
    """Get global model selector."""
    global _selector
    if _selector is None:
        _selector = ModelSelector()
    return _selector


def select_model(
    task_type: str | None,
    role: str,
    tier: Tier | str = Tier.PRO,
    prioritize: Strategy | str = Strategy.BALANCED,
) -> SelectionResult:
    """Convenience wrapper around the global selector."""
    return get_model_selector().select_model(task_type, role, tier, prioritize)


__all__ = [
    "BUDGET_STRATEGIES",
    "ModelSelector",
    "STRATEGY_WEIGHTS",
    "ScoredModel",
    "get_model_selector",
    "score_model",
    "select_model",
    "strategy_for_budget",
]
