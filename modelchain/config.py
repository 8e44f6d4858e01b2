"""
Configuration management for modelchain.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .events import EventLogConfig

DEFAULT_CONFIG_PATH = Path.home() / ".modelchain" / "config.json"


@dataclass
class SelectionConfig:
    """Defaults applied to chain requests that leave these fields out."""

    default_tier: Literal["free", "pro", "pro-plus", "enterprise"] = "pro"
    default_budget: Literal["low", "medium", "high", "unlimited"] = "medium"
    default_chain_type: str = "coding"


@dataclass
class ExecutionConfig:
    """Configuration for running chains."""

    # Wall-clock limit around each role, invoker retries included
    role_timeout_seconds: float = 300.0
    # Per-role excerpt length in the "Chain Context" prompt section
    context_excerpt_chars: int = 500


@dataclass
class InvocationConfig:
    """Configuration for provider calls."""

    max_tokens: int = 4096
    temperature: float = 0.2
    # Limit on a single provider attempt; timed-out attempts are retried
    attempt_timeout_seconds: float = 60.0
    # Retries after the first attempt, for retryable errors only
    max_retries: int = 2
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 8.0
    openrouter_base_url: str = "https://openrouter.ai/api/v1"


@dataclass
class ModelChainConfig:
    """Complete modelchain configuration."""

    selection: SelectionConfig = field(default_factory=SelectionConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    invocation: InvocationConfig = field(default_factory=InvocationConfig)
    event_log: EventLogConfig = field(default_factory=EventLogConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "ModelChainConfig":
        """Load configuration from file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        return cls(
            selection=SelectionConfig(**data.get("selection", {})),
            execution=ExecutionConfig(**data.get("execution", {})),
            invocation=InvocationConfig(**data.get("invocation", {})),
            event_log=EventLogConfig(**data.get("event_log", {})),
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(
                {
                    "selection": self.selection.__dict__,
                    "execution": self.execution.__dict__,
                    "invocation": self.invocation.__dict__,
                    "event_log": self.event_log.__dict__,
                },
                f,
                indent=2,
            )


# Default configuration instance
default_config = ModelChainConfig()
