"""
Cost estimation and accounting for chain executions.

Prices come from the model catalog (USD per million tokens). Chain estimates
assume a fixed token volume per role; actual usage is recorded per call.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .catalog import MODEL_CATALOG
from .types import CostRange, Pricing

# Pricing used for models missing from the catalog (manual mode accepts any id)
DEFAULT_PRICING = Pricing(input=3.0, output=15.0)

# Assumed (input, output) tokens per role for low/medium/high estimates
ASSUMED_ROLE_TOKENS: dict[str, tuple[int, int]] = {
    "low": (2_000, 1_000),
    "medium": (8_000, 3_000),
    "high": (32_000, 8_000),
}

# Upper bounds on the average per-million price of a chain's models
COST_CATEGORIES: list[tuple[float, str]] = [
    (2.0, "very-low"),
    (5.0, "low"),
    (15.0, "medium"),
    (40.0, "high"),
]


def get_model_pricing(model_id: str) -> Pricing:
    """Catalog pricing for a model, or DEFAULT_PRICING when unknown."""
    profile = MODEL_CATALOG.get(model_id)
    if profile is None:
        return DEFAULT_PRICING
    return profile.pricing


def estimate_call_cost(input_tokens: int, output_tokens: int, model_id: str) -> float:
    """
    Estimate cost for a single model call.

    Args:
        input_tokens: Number of input tokens
        output_tokens: Number of output tokens
        model_id: Catalog model id

    Returns:
        Estimated cost in dollars
    """
    pricing = get_model_pricing(model_id)
    input_cost = (input_tokens / 1_000_000) * pricing.input
    output_cost = (output_tokens / 1_000_000) * pricing.output
    return input_cost + output_cost


def estimate_role_cost(model_id: str) -> CostRange:
    """Low/medium/high cost of running one role on a model."""
    return CostRange(
        *(
            estimate_call_cost(input_tokens, output_tokens, model_id)
            for input_tokens, output_tokens in (
                ASSUMED_ROLE_TOKENS["low"],
                ASSUMED_ROLE_TOKENS["medium"],
                ASSUMED_ROLE_TOKENS["high"],
            )
        )
    )


def estimate_chain_cost(model_ids: Iterable[str]) -> CostRange:
    """Summed cost range over every role of a chain."""
    total = CostRange(0.0, 0.0, 0.0)
    for model_id in model_ids:
        total = total + estimate_role_cost(model_id)
    return total


def categorize_cost(model_ids: Iterable[str]) -> str:
    """
    Label a chain by the average per-million price of its models.

    Returns one of very-low, low, medium, high, very-high.
    """
    prices = [get_model_pricing(model_id).average for model_id in model_ids]
    if not prices:
        return "very-low"
    average = sum(prices) / len(prices)
    for bound, label in COST_CATEGORIES:
        if average < bound:
            return label
    return "very-high"


def estimate_tokens(text: str) -> int:
    """Rough token count: about four characters per token."""
    return max(1, len(text) // 4) if text else 0


@dataclass
class TokenUsage:
    """Token usage for a single role invocation."""

    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    role: str = ""
    chain_id: str = ""
    cost: float | None = None
    timestamp: float = field(default_factory=time.time)
    latency_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def estimate_cost(self) -> float:
        """Reported cost if the invoker supplied one, else the catalog estimate."""
        if self.cost is not None:
            return self.cost
        return estimate_call_cost(self.input_tokens, self.output_tokens, self.model)


class CostTracker:
    """
    Accumulates token usage and cost across chains.

    Safe to share between concurrently running chains.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._usage: list[TokenUsage] = []

    def record_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        model: str,
        role: str = "",
        chain_id: str = "",
        cost: float | None = None,
        latency_ms: float = 0.0,
    ) -> TokenUsage:
        """Record one invocation and return the usage record."""
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            role=role,
            chain_id=chain_id,
            cost=cost,
            latency_ms=latency_ms,
        )
        with self._lock:
            self._usage.append(usage)
        return usage

    def _snapshot(self) -> list[TokenUsage]:
        with self._lock:
            return list(self._usage)

    @property
    def total_tokens(self) -> int:
        return sum(u.total_tokens for u in self._snapshot())

    @property
    def total_cost(self) -> float:
        return sum(u.estimate_cost() for u in self._snapshot())

    @property
    def total_latency_ms(self) -> float:
        return sum(u.latency_ms for u in self._snapshot())

    def get_chain_cost(self, chain_id: str) -> float:
        """Total cost recorded for one chain."""
        return sum(u.estimate_cost() for u in self._snapshot() if u.chain_id == chain_id)

    def _breakdown(self, key: str) -> dict[str, dict[str, Any]]:
        breakdown: dict[str, dict[str, Any]] = {}
        for usage in self._snapshot():
            entry = breakdown.setdefault(
                getattr(usage, key),
                {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0, "cost": 0.0, "calls": 0},
            )
            entry["input_tokens"] += usage.input_tokens
            entry["output_tokens"] += usage.output_tokens
            entry["total_tokens"] += usage.total_tokens
            entry["cost"] += usage.estimate_cost()
            entry["calls"] += 1
        return breakdown

    def get_breakdown_by_model(self) -> dict[str, dict[str, Any]]:
        return self._breakdown("model")

    def get_breakdown_by_role(self) -> dict[str, dict[str, Any]]:
        return self._breakdown("role")

    def get_summary(self) -> dict[str, Any]:
        """Get complete cost summary."""
        usage = self._snapshot()
        return {
            "total_tokens": sum(u.total_tokens for u in usage),
            "total_cost": sum(u.estimate_cost() for u in usage),
            "api_calls": len(usage),
            "chains": len({u.chain_id for u in usage if u.chain_id}),
            "latency": {
                "total_ms": sum(u.latency_ms for u in usage),
                "average_ms": (sum(u.latency_ms for u in usage) / len(usage)) if usage else 0.0,
            },
            "by_model": self.get_breakdown_by_model(),
            "by_role": self.get_breakdown_by_role(),
        }

    def format_report(self) -> str:
        """Human-readable cost report."""
        summary = self.get_summary()
        lines = [
            "Cost Report",
            f"  Tokens: {summary['total_tokens']:,}",
            f"  Cost: ${summary['total_cost']:.4f}",
            f"  API Calls: {summary['api_calls']} across {summary['chains']} chain(s)",
        ]
        if summary["by_model"]:
            lines.append("  By Model:")
            for model, data in sorted(summary["by_model"].items()):
                lines.append(f"    {model}: {data['total_tokens']:,} tokens, ${data['cost']:.4f}")
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._usage.clear()


# Global tracker instance
_tracker: CostTracker | None = None


def get_cost_tracker() -> CostTracker:
    """Get global cost tracker."""
    global _tracker
    if _tracker is None:
        _tracker = CostTracker()
    return _tracker


__all__ = [
    "ASSUMED_ROLE_TOKENS",
    "COST_CATEGORIES",
    "CostTracker",
    "DEFAULT_PRICING",
    "TokenUsage",
    "categorize_cost",
    "estimate_call_cost",
    "estimate_chain_cost",
    "estimate_role_cost",
    "estimate_tokens",
    "get_cost_tracker",
    "get_model_pricing",
]
