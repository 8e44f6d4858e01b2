"""
Chain orchestration.

Resolves a role->model plan for a request, then runs the roles strictly in
sequence, feeding each role's output forward to the next one. Tracks the
active chains so they can be inspected and stopped while they run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .config import ModelChainConfig, default_config
from .cost_tracker import CostTracker, categorize_cost, estimate_chain_cost, get_cost_tracker
from .events import (
    ChainCompletedPayload,
    ChainEvent,
    ChainEventPayload,
    ChainEventType,
    ChainFailedPayload,
    ChainStartedPayload,
    ChainStoppedPayload,
    EventBus,
    JsonlEventSink,
    LoggingObserver,
    RoleCompletedPayload,
    RoleStartedPayload,
)
from .invocation import ModelInvoker, ProviderInvoker, SimulatedInvoker
from .model_selector import ModelSelector, get_model_selector
from .progress import CancellationToken, ProgressCallback, ProgressUpdate, report_progress
from .prompts import build_system_prompt, build_task_prompt
from .types import (
    ChainCancelledError,
    ChainMode,
    ChainPlan,
    ChainRequest,
    ChainResult,
    ChainStatus,
    ConfigurationError,
    InvocationResult,
    InvocationTimeoutError,
    MissingModelMapError,
    ModelChainError,
    RoleExecutionError,
    RoleResult,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Plan resolution
# ============================================================================


class PlanResolver(Protocol):
    """Turns a chain request into a role->model plan."""

    def resolve(self, request: ChainRequest) -> ChainPlan: ...


class ManualPlanResolver:
    """Uses the caller's role->model map verbatim, in map order."""

    def resolve(self, request: ChainRequest) -> ChainPlan:
        if not request.models:
            raise MissingModelMapError()
        models = dict(request.models)
        return ChainPlan(
            mode=ChainMode.MANUAL,
            roles=tuple(models),
            models=models,
            estimated_cost=estimate_chain_cost(models.values()),
            cost_category=categorize_cost(models.values()),
        )


class TemplatePlanResolver:
    """Uses a pre-configured chain template."""

    def __init__(self, selector: ModelSelector):
        self.selector = selector

    def resolve(self, request: ChainRequest) -> ChainPlan:
        if not request.template:
            raise ConfigurationError("Template mode requires a template name")
        template = self.selector.get_template(request.template)
        models = dict(template.roles)
        return ChainPlan(
            mode=ChainMode.TEMPLATE,
            roles=tuple(models),
            models=models,
            template=template.template_id,
            estimated_cost=estimate_chain_cost(models.values()),
            cost_category=categorize_cost(models.values()),
        )


class AutoPlanResolver:
    """Selects a model per role of the requested chain type."""

    def __init__(self, selector: ModelSelector):
        self.selector = selector

    def resolve(self, request: ChainRequest) -> ChainPlan:
        selection = self.selector.select_chain(
            request.chain_type,
            tier=request.tier,
            budget=request.budget,
            prioritize=request.prioritize,
        )
        return ChainPlan(
            mode=ChainMode.AUTO,
            roles=tuple(selection.chain),
            models=selection.chain,
            strategy=selection.strategy,
            estimated_cost=selection.estimated_cost,
            cost_category=selection.cost_category,
            breakdown=tuple(selection.breakdown),
        )


# ============================================================================
# Chain state
# ============================================================================


@dataclass
class ChainState:
    """Mutable state of one running chain."""

    chain_id: str
    request: ChainRequest
    plan: ChainPlan
    status: ChainStatus = ChainStatus.RUNNING
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    current_role: str | None = None
    results: dict[str, RoleResult] = field(default_factory=dict)
    context: dict[str, str] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.time()
        return (end - self.started_at) * 1000

    @property
    def completed_roles(self) -> list[str]:
        return [role for role, result in list(self.results.items()) if result.status == "completed"]

    @property
    def cost(self) -> float:
        return sum(result.cost for result in self.results.values())

    def snapshot(self) -> dict[str, Any]:
        """Copy of the state safe to hand out."""
        return {
            "chain_id": self.chain_id,
            "status": self.status.value,
            "task": self.request.task,
            "mode": self.plan.mode.value,
            "chain_type": self.request.chain_type,
            "tier": self.request.tier.value,
            "roles": list(self.plan.roles),
            "models": dict(self.plan.models),
            "current_role": self.current_role,
            "completed_roles": self.completed_roles,
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
        }


# ============================================================================
# Orchestrator
# ============================================================================


class ChainOrchestrator:
    """
    Runs multi-model role chains.

    Many chains may run concurrently on one orchestrator; the registry of
    active chains and the statistics are guarded by a lock and only
    snapshots are handed out. stop_chain() may be called from any thread.

    Example:
        orchestrator = ChainOrchestrator(invoker=SimulatedInvoker())
        result = await orchestrator.execute_chain(task="Build a login form")
    """

    def __init__(
        self,
        selector: ModelSelector | None = None,
        invoker: ModelInvoker | None = None,
        config: ModelChainConfig | None = None,
        events: EventBus | None = None,
        cost_tracker: CostTracker | None = None,
        log_events: bool = True,
    ):
        """
        Initialize orchestrator.

        Args:
            selector: Model selector (uses the global one if None)
            invoker: Model invoker (a ProviderInvoker is created on first use if None)
            config: Configuration (uses default if None)
            events: Event bus to emit lifecycle events on
            cost_tracker: Usage accounting (uses the global tracker if None)
            log_events: Subscribe a LoggingObserver to the event bus
        """
        self.config = config or default_config
        self.selector = selector or get_model_selector()
        self.cost_tracker = cost_tracker or get_cost_tracker()
        self.events = events or EventBus()
        self._invoker = invoker

        if log_events:
            self.events.subscribe(LoggingObserver())
        if self.config.event_log.enabled:
            self.events.subscribe(JsonlEventSink(self.config.event_log))

        self._resolvers: dict[ChainMode, PlanResolver] = {
            ChainMode.AUTO: AutoPlanResolver(self.selector),
            ChainMode.MANUAL: ManualPlanResolver(),
            ChainMode.TEMPLATE: TemplatePlanResolver(self.selector),
        }

        self._lock = threading.Lock()
        self._active: dict[str, ChainState] = {}
        self._stats: dict[str, Any] = {
            "total_chains": 0,
            "completed": 0,
            "failed": 0,
            "stopped": 0,
            "by_mode": {},
            "by_type": {},
        }

    @property
    def invoker(self) -> ModelInvoker:
        """Model invoker, created from the invocation config on first use."""
        if self._invoker is None:
            self._invoker = ProviderInvoker(self.config.invocation)
        return self._invoker

    def _emit(self, event_type: ChainEventType, chain_id: str, payload: ChainEventPayload) -> None:
        self.events.emit(ChainEvent(type=event_type, chain_id=chain_id, payload=payload))

    def _build_request(self, request: ChainRequest | None, overrides: dict[str, Any]) -> ChainRequest:
        if request is None:
            selection = self.config.selection
            overrides.setdefault("tier", selection.default_tier)
            overrides.setdefault("budget", selection.default_budget)
            overrides.setdefault("chain_type", selection.default_chain_type)
            return ChainRequest(**overrides)
        if overrides:
            return ChainRequest(**{**request.model_dump(), **overrides})
        return request

    def resolve_plan(self, request: ChainRequest) -> ChainPlan:
        """
        Resolve the plan for a request without running it.

        Manual and template roles run as given; roles missing from the role
        catalog get a generic system prompt.

        Raises:
            ConfigurationError: Unknown chain type, role (auto mode) or
                template, or a manual request without a model map
            NoEligibleModelError: If auto selection finds no model for a role
        """
        return self._resolvers[request.mode].resolve(request)

    async def execute_chain(
        self,
        request: ChainRequest | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        **kwargs: Any,
    ) -> ChainResult:
        """
        Execute a chain of roles.

        Args:
            request: Chain request; keyword arguments build one (or override
                fields of the given one)
            on_progress: Called with a ProgressUpdate before each role runs

        Returns:
            ChainResult. Invocation failures and stops are reported on the
            result (success=False), never raised.

        Raises:
            ConfigurationError: If the request cannot be resolved into a plan
            NoEligibleModelError: If auto selection finds no model for a role
        """
        request = self._build_request(request, kwargs)

        with self._lock:
            self._stats["total_chains"] += 1
            by_mode = self._stats["by_mode"]
            by_mode[request.mode.value] = by_mode.get(request.mode.value, 0) + 1
            chain_type = _chain_type_label(request)
            if chain_type is not None:
                by_type = self._stats["by_type"]
                by_type[chain_type] = by_type.get(chain_type, 0) + 1

        try:
            plan = self.resolve_plan(request)
            invoker = self.invoker
        except ModelChainError as e:
            with self._lock:
                self._stats["failed"] += 1
            logger.error(f"Chain rejected before execution: {e}")
            raise

        state = ChainState(chain_id=f"chain_{uuid.uuid4().hex[:12]}", request=request, plan=plan)
        with self._lock:
            self._active[state.chain_id] = state

        logger.info(
            f"Chain {state.chain_id} started ({plan.mode.value}): "
            + " -> ".join(f"{role}={plan.model_for(role)}" for role in plan.roles)
        )
        self._emit(
            ChainEventType.CHAIN_STARTED,
            state.chain_id,
            ChainStartedPayload(
                task=request.task,
                mode=plan.mode.value,
                roles=list(plan.roles),
                models=dict(plan.models),
                template=plan.template,
            ),
        )

        try:
            total = len(plan.roles)
            for step, role in enumerate(plan.roles, start=1):
                if state.token.is_cancelled:
                    raise ChainCancelledError(state.chain_id, role)
                await self._run_role(state, invoker, role, step, total, on_progress)
        except ChainCancelledError:
            return self._finish_stopped(state)
        except RoleExecutionError as e:
            return self._finish_failed(state, e)
        else:
            return self._finish_completed(state)
        finally:
            with self._lock:
                self._active.pop(state.chain_id, None)

    async def _run_role(
        self,
        state: ChainState,
        invoker: ModelInvoker,
        role: str,
        step: int,
        total: int,
        on_progress: ProgressCallback | None,
    ) -> None:
        model_id = state.plan.model_for(role)
        state.current_role = role

        try:
            await report_progress(
                on_progress,
                ProgressUpdate(
                    chain_id=state.chain_id,
                    role=role,
                    model=model_id,
                    step=step,
                    total_steps=total,
                ),
            )
        except Exception:
            logger.exception(f"Progress callback failed for {state.chain_id} role {role}")

        self._emit(
            ChainEventType.ROLE_STARTED,
            state.chain_id,
            RoleStartedPayload(role=role, model=model_id, step=step, total_steps=total),
        )

        previous_output = list(state.context.values())[-1] if state.context else None
        system_prompt = build_system_prompt(role)
        task_prompt = build_task_prompt(
            role,
            state.request.task,
            previous_output=previous_output,
            chain_context=state.context,
            excerpt_chars=self.config.execution.context_excerpt_chars,
        )
        logger.debug(f"[{state.chain_id}] {role} prompt: {task_prompt[:200]!r}")

        started = time.time()
        try:
            invocation = await self._invoke(state, invoker, role, model_id, system_prompt, task_prompt)
        except ChainCancelledError:
            state.results[role] = self._failed_result(role, model_id, started, "cancelled")
            raise
        except Exception as e:
            state.results[role] = self._failed_result(role, model_id, started, str(e))
            raise RoleExecutionError(state.chain_id, role, model_id, e) from e

        result = RoleResult(
            role=role,
            model=model_id,
            output=invocation.text,
            duration_ms=(time.time() - started) * 1000,
            timestamp=datetime.now().isoformat(),
            input_tokens=invocation.input_tokens,
            output_tokens=invocation.output_tokens,
            cost=invocation.cost,
        )
        state.results[role] = result
        state.context[role] = invocation.text
        self.cost_tracker.record_usage(
            invocation.input_tokens,
            invocation.output_tokens,
            model_id,
            role=role,
            chain_id=state.chain_id,
            cost=invocation.cost,
            latency_ms=invocation.latency_ms,
        )

        self._emit(
            ChainEventType.ROLE_COMPLETED,
            state.chain_id,
            RoleCompletedPayload(
                role=role,
                model=model_id,
                duration_ms=result.duration_ms,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                cost=result.cost,
            ),
        )

    async def _invoke(
        self,
        state: ChainState,
        invoker: ModelInvoker,
        role: str,
        model_id: str,
        system_prompt: str,
        task_prompt: str,
    ) -> InvocationResult:
        """
        Race the invocation against the chain's cancellation token.

        The invoker gets the per-attempt limit and may retry within the
        role's wall-clock limit.
        """
        timeout = self.config.execution.role_timeout_seconds
        attempt_timeout = min(self.config.invocation.attempt_timeout_seconds, timeout)
        invoke_task = asyncio.ensure_future(
            asyncio.wait_for(
                invoker.invoke(model_id, system_prompt, task_prompt, timeout=attempt_timeout),
                timeout,
            )
        )
        cancel_task = asyncio.ensure_future(state.token.wait())

        try:
            done, _ = await asyncio.wait({invoke_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            invoke_task.cancel()
            cancel_task.cancel()
            raise

        if invoke_task not in done:
            invoke_task.cancel()
            await asyncio.gather(invoke_task, return_exceptions=True)
            raise ChainCancelledError(state.chain_id, role)

        cancel_task.cancel()
        try:
            return invoke_task.result()
        except asyncio.TimeoutError as e:
            raise InvocationTimeoutError(model_id, timeout) from e

    def _failed_result(self, role: str, model_id: str, started: float, error: str) -> RoleResult:
        return RoleResult(
            role=role,
            model=model_id,
            output="",
            duration_ms=(time.time() - started) * 1000,
            timestamp=datetime.now().isoformat(),
            status="failed",
            error=error,
        )

    def _result(self, state: ChainState, error: str | None = None, failure: ModelChainError | None = None) -> ChainResult:
        return ChainResult(
            chain_id=state.chain_id,
            success=state.status is ChainStatus.COMPLETED,
            status=state.status,
            plan=state.plan,
            results=dict(state.results),
            duration_ms=state.duration_ms,
            cost=state.cost,
            error=error,
            failure=failure,
        )

    def _finish_completed(self, state: ChainState) -> ChainResult:
        with self._lock:
            if state.status is not ChainStatus.RUNNING:
                # Stopped after the last role finished
                return self._result(state, error="Chain stopped")
            state.status = ChainStatus.COMPLETED
            state.ended_at = time.time()
            state.current_role = None
            self._stats["completed"] += 1

        self._emit(
            ChainEventType.CHAIN_COMPLETED,
            state.chain_id,
            ChainCompletedPayload(
                duration_ms=state.duration_ms,
                roles=list(state.plan.roles),
                cost=state.cost,
            ),
        )
        return self._result(state)

    def _finish_failed(self, state: ChainState, error: RoleExecutionError) -> ChainResult:
        with self._lock:
            if state.status is not ChainStatus.RUNNING:
                return self._result(state, error="Chain stopped")
            state.status = ChainStatus.FAILED
            state.ended_at = time.time()
            self._stats["failed"] += 1

        self._emit(
            ChainEventType.CHAIN_FAILED,
            state.chain_id,
            ChainFailedPayload(
                error=str(error),
                role=error.role,
                model=error.model_id,
                retryable=error.retryable,
                duration_ms=state.duration_ms,
            ),
        )
        return self._result(state, error=str(error), failure=error)

    def _finish_stopped(self, state: ChainState) -> ChainResult:
        # stop_chain already marked the state, counted it and emitted chain:stopped
        if state.ended_at is None:
            state.ended_at = time.time()
        return self._result(state, error="Chain stopped")

    def get_active_chains(self) -> list[dict[str, Any]]:
        """Snapshots of every running chain."""
        with self._lock:
            return [state.snapshot() for state in self._active.values()]

    def get_chain_status(self, chain_id: str) -> dict[str, Any] | None:
        """Snapshot of a running chain, or None if it is not active."""
        with self._lock:
            state = self._active.get(chain_id)
            return state.snapshot() if state else None

    def stop_chain(self, chain_id: str) -> bool:
        """
        Stop a running chain.

        The in-flight invocation is cancelled and execute_chain returns a
        result with status stopped.

        Returns:
            True if the chain was running, False otherwise
        """
        with self._lock:
            state = self._active.get(chain_id)
            if state is None or state.status is not ChainStatus.RUNNING:
                return False
            state.status = ChainStatus.STOPPED
            state.ended_at = time.time()
            del self._active[chain_id]
            self._stats["stopped"] += 1
            role = state.current_role
            completed = state.completed_roles

        state.token.cancel()
        logger.info(f"Chain {chain_id} stopped" + (f" during {role}" if role else ""))
        self._emit(
            ChainEventType.CHAIN_STOPPED,
            chain_id,
            ChainStoppedPayload(role=role, completed_roles=completed),
        )
        return True

    def get_stats(self) -> dict[str, Any]:
        """Counters over every chain this orchestrator has seen."""
        with self._lock:
            stats = {
                "total_chains": self._stats["total_chains"],
                "completed": self._stats["completed"],
                "failed": self._stats["failed"],
                "stopped": self._stats["stopped"],
                "by_mode": dict(self._stats["by_mode"]),
                "by_type": dict(self._stats["by_type"]),
                "active_chains": len(self._active),
            }
        total = stats["total_chains"]
        stats["success_rate"] = f"{stats['completed'] / total * 100:.2f}%" if total else "0.00%"
        return stats


def _chain_type_label(request: ChainRequest) -> str | None:
    """Key for the by_type statistics; manual chains have no chain type."""
    if request.mode is ChainMode.AUTO:
        return request.chain_type
    if request.mode is ChainMode.TEMPLATE:
        return request.template
    return None


# Global orchestrator instance
_orchestrator: ChainOrchestrator | None = None


def get_orchestrator() -> ChainOrchestrator:
    """Get global chain orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChainOrchestrator()
    return _orchestrator


# ============================================================================
# CLI
# ============================================================================


def _parse_model_map(pairs: list[str]) -> dict[str, str]:
    models: dict[str, str] = {}
    for pair in pairs:
        role, sep, model_id = pair.partition("=")
        if not sep or not role or not model_id:
            raise ConfigurationError(f"Expected role=model_id, got '{pair}'")
        models[role] = model_id
    return models


async def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Multi-model chain orchestrator")
    parser.add_argument("--task", help="Task for the chain to work on")
    parser.add_argument("--mode", choices=[mode.value for mode in ChainMode])
    parser.add_argument("--tier", choices=["free", "pro", "pro-plus", "enterprise"])
    parser.add_argument("--chain-type", help="Chain type for auto mode (default: coding)")
    parser.add_argument("--template", help="Template id for template mode")
    parser.add_argument(
        "--model",
        action="append",
        default=[],
        metavar="ROLE=MODEL_ID",
        help="Role assignment for manual mode (repeatable)",
    )
    parser.add_argument("--budget", choices=["low", "medium", "high", "unlimited"])
    parser.add_argument("--prioritize", choices=["quality", "balanced", "cost"])
    parser.add_argument("--dry-run", action="store_true", help="Use simulated model calls")
    parser.add_argument("--events-jsonl", help="Append chain events to this JSONL file")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--list-templates", action="store_true", help="List chain templates and exit")
    parser.add_argument("--select", metavar="TASK_TYPE:ROLE", help="Show the model selected for a role and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ModelChainConfig.load()
    selector = ModelSelector()

    if args.list_templates:
        for template in selector.list_templates():
            roles = ", ".join(f"{role}={model}" for role, model in template.roles.items())
            print(f"{template.template_id}: {template.name} [{template.estimated_cost} cost, {template.estimated_speed}]")
            print(f"    {roles}")
        return 0

    if args.select:
        task_type, _, role = args.select.partition(":")
        try:
            selection = selector.select_model(
                task_type or None,
                role,
                args.tier or config.selection.default_tier,
                args.prioritize or "balanced",
            )
        except ModelChainError as e:
            print(f"Error: {e}")
            return 2
        print(json.dumps(selection.model_dump(mode="json"), indent=2))
        return 0

    if not args.task:
        parser.error("--task is required")

    try:
        models = _parse_model_map(args.model)
    except ConfigurationError as e:
        parser.error(str(e))

    mode = args.mode or ("manual" if models else "template" if args.template else "auto")
    request = ChainRequest(
        task=args.task,
        mode=mode,
        tier=args.tier or config.selection.default_tier,
        chain_type=args.chain_type or config.selection.default_chain_type,
        template=args.template,
        models=models or None,
        budget=args.budget or config.selection.default_budget,
        prioritize=args.prioritize,
    )

    if args.events_jsonl:
        config.event_log.enabled = True
        config.event_log.log_path = args.events_jsonl

    if args.dry_run:
        invoker: ModelInvoker = SimulatedInvoker()
    else:
        try:
            invoker = ProviderInvoker(config.invocation)
        except ConfigurationError as e:
            print(f"Error: {e}")
            print("Or pass --dry-run to simulate model calls")
            return 2

    orchestrator = ChainOrchestrator(selector=selector, invoker=invoker, config=config)

    def show_progress(update: ProgressUpdate) -> None:
        print(f"[{update.step}/{update.total_steps}] {update.role} -> {update.model}")

    try:
        result = await orchestrator.execute_chain(request, on_progress=show_progress)
    except ModelChainError as e:
        print(f"Error: {e}")
        return 2

    print(json.dumps(result.to_dict(), indent=2, default=str))
    if args.verbose:
        print(orchestrator.cost_tracker.format_report())
    return 0 if result.success else 1


def cli() -> None:
    """Console script entry point."""
    raise SystemExit(asyncio.run(main()))


__all__ = [
    "AutoPlanResolver",
    "ChainOrchestrator",
    "ChainState",
    "ManualPlanResolver",
    "PlanResolver",
    "TemplatePlanResolver",
    "get_orchestrator",
    "main",
]


if __name__ == "__main__":
    cli()
