"""
Pytest configuration and fixtures for modelchain tests.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# Add project root to path so we can import the modelchain package
sys.path.insert(0, str(Path(__file__).parent.parent))

from modelchain.config import ModelChainConfig
from modelchain.cost_tracker import CostTracker
from modelchain.events import EventBus
from modelchain.model_selector import ModelSelector
from modelchain.orchestrator import ChainOrchestrator
from modelchain.types import InvocationResult


class FakeInvoker:
    """
    Scripted model invoker.

    Responses, failures and delays are keyed by model id. Every call is
    recorded in order; calls cancelled mid-flight are listed in `cancelled`.
    """

    def __init__(
        self,
        responses: dict[str, str] | None = None,
        failures: dict[str, BaseException] | None = None,
        delays: dict[str, float] | None = None,
    ):
        self.responses = responses or {}
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: list[dict[str, Any]] = []
        self.cancelled: list[str] = []

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        task_prompt: str,
        timeout: float | None = None,
    ) -> InvocationResult:
        self.calls.append(
            {
                "model_id": model_id,
                "system_prompt": system_prompt,
                "task_prompt": task_prompt,
                "timeout": timeout,
            }
        )
        delay = self.delays.get(model_id, 0)
        if delay:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.cancelled.append(model_id)
                raise
        if model_id in self.failures:
            raise self.failures[model_id]
        return InvocationResult(
            text=self.responses.get(model_id, f"output from {model_id}"),
            model_id=model_id,
            input_tokens=100,
            output_tokens=50,
            cost=0.01,
            latency_ms=1.0,
        )

    def calls_for(self, model_id: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["model_id"] == model_id]

    @property
    def called_models(self) -> list[str]:
        return [call["model_id"] for call in self.calls]


@pytest.fixture
def fake_invoker():
    """Provide a scripted invoker that succeeds for every model."""
    return FakeInvoker()


@pytest.fixture
def selector():
    """Provide a fresh model selector."""
    return ModelSelector()


@pytest.fixture
def config():
    """Provide a default configuration."""
    return ModelChainConfig()


@pytest.fixture
def event_log():
    """Provide a list that collects emitted chain events."""
    return []


@pytest.fixture
def orchestrator(selector, fake_invoker, config, event_log):
    """Provide an orchestrator wired to the fake invoker and an event collector."""
    bus = EventBus()
    bus.subscribe(event_log.append)
    return ChainOrchestrator(
        selector=selector,
        invoker=fake_invoker,
        config=config,
        events=bus,
        cost_tracker=CostTracker(),
        log_events=False,
    )


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "hypothesis: property-based tests"
    )
    config.addinivalue_line(
        "markers", "slow: tests that take >1s"
    )
