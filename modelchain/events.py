"""
Chain lifecycle events and the observers that consume them.

Event names are the wire contract: chain:started, role:started,
role:completed, chain:completed, chain:failed, chain:stopped.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


# ============================================================================
# Typed Payload Schemas
# ============================================================================


@dataclass
class ChainStartedPayload:
    """Payload for chain:started events."""

    task: str
    mode: str
    roles: list[str]
    models: dict[str, str]
    template: str | None = None


@dataclass
class RoleStartedPayload:
    """Payload for role:started events."""

    role: str
    model: str
    step: int
    total_steps: int


@dataclass
class RoleCompletedPayload:
    """Payload for role:completed events."""

    role: str
    model: str
    duration_ms: float
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


@dataclass
class ChainCompletedPayload:
    """Payload for chain:completed events."""

    duration_ms: float
    roles: list[str]
    cost: float = 0.0


@dataclass
class ChainFailedPayload:
    """Payload for chain:failed events."""

    error: str
    role: str | None = None
    model: str | None = None
    retryable: bool = False
    duration_ms: float = 0.0


@dataclass
class ChainStoppedPayload:
    """Payload for chain:stopped events."""

    role: str | None = None
    completed_roles: list[str] = field(default_factory=list)


ChainEventPayload = Union[
    ChainStartedPayload,
    RoleStartedPayload,
    RoleCompletedPayload,
    ChainCompletedPayload,
    ChainFailedPayload,
    ChainStoppedPayload,
]


class ChainEventType(Enum):
    """Lifecycle event names."""

    CHAIN_STARTED = "chain:started"
    ROLE_STARTED = "role:started"
    ROLE_COMPLETED = "role:completed"
    CHAIN_COMPLETED = "chain:completed"
    CHAIN_FAILED = "chain:failed"
    CHAIN_STOPPED = "chain:stopped"


@dataclass
class ChainEvent:
    """
    A single lifecycle event of one chain.

    Attributes:
        type: Event name
        chain_id: Chain the event belongs to
        payload: Typed payload for the event type
        timestamp: Unix timestamp (auto-generated if not provided)
    """

    type: ChainEventType
    chain_id: str
    payload: ChainEventPayload
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Wire form: event name, chain id and the flattened payload."""
        return {
            "event": self.type.value,
            "chain_id": self.chain_id,
            **asdict(self.payload),
            "timestamp": self.timestamp,
        }


@runtime_checkable
class ChainObserver(Protocol):
    """Anything that wants to receive chain events."""

    def on_event(self, event: ChainEvent) -> None: ...


Observer = Union[ChainObserver, Callable[[ChainEvent], None]]


class EventBus:
    """
    Fan-out of chain events to subscribed observers.

    Observers run synchronously in subscription order. An observer that
    raises is logged and skipped; it never aborts the chain.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def emit(self, event: ChainEvent) -> None:
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                if isinstance(observer, ChainObserver):
                    observer.on_event(event)
                else:
                    observer(event)
            except Exception:
                logger.exception(f"Observer {observer!r} failed on {event.type.value}")


class LoggingObserver:
    """Turns chain events into log records."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def on_event(self, event: ChainEvent) -> None:
        payload = event.payload
        if isinstance(payload, ChainFailedPayload):
            self.log.error(f"[{event.chain_id}] {event.type.value}: {payload.error}")
        elif isinstance(payload, RoleStartedPayload):
            self.log.info(
                f"[{event.chain_id}] {event.type.value}: {payload.role} on {payload.model} "
                f"({payload.step}/{payload.total_steps})"
            )
        elif isinstance(payload, RoleCompletedPayload):
            self.log.info(
                f"[{event.chain_id}] {event.type.value}: {payload.role} in {payload.duration_ms:.0f}ms, "
                f"{payload.input_tokens + payload.output_tokens} tokens, ${payload.cost:.4f}"
            )
        else:
            self.log.info(f"[{event.chain_id}] {event.type.value}")


@dataclass
class EventLogConfig:
    """Configuration for the JSONL event sink."""

    # Log file path (supports ~ expansion)
    log_path: str = "~/.modelchain/chain_events.jsonl"

    # Whether logging is enabled
    enabled: bool = False

    # Maximum log file size in MB before rotation
    max_size_mb: float = 50.0

    # Number of rotated files to keep
    max_files: int = 5


class JsonlEventSink:
    """
    Appends chain events to a JSONL file with size-based rotation.

    Usage:
        sink = JsonlEventSink(EventLogConfig(enabled=True))
        orchestrator.events.subscribe(sink)
    """

    def __init__(self, config: EventLogConfig | None = None):
        self.config = config or EventLogConfig()
        self._log_path: Path | None = None
        self._lock = threading.Lock()
        self._event_count = 0
        self._session_start = datetime.now().isoformat()

        if self.config.enabled:
            self._ensure_log_path()

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    @property
    def event_count(self) -> int:
        return self._event_count

    def _ensure_log_path(self) -> None:
        """Ensure log directory exists."""
        path = Path(self.config.log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = path

    def _check_rotation(self) -> None:
        """Check if log file needs rotation."""
        if self._log_path is None or not self._log_path.exists():
            return

        size_mb = self._log_path.stat().st_size / (1024 * 1024)
        if size_mb >= self.config.max_size_mb:
            self._rotate_logs()

    def _rotate_logs(self) -> None:
        """Rotate log files."""
        if self._log_path is None:
            return

        # Shift existing rotated files, dropping the oldest
        for i in range(self.config.max_files - 1, 0, -1):
            old_path = self._log_path.with_suffix(f".jsonl.{i}")
            new_path = self._log_path.with_suffix(f".jsonl.{i + 1}")
            if old_path.exists():
                if i + 1 >= self.config.max_files:
                    old_path.unlink()
                else:
                    old_path.rename(new_path)

        if self._log_path.exists():
            self._log_path.rename(self._log_path.with_suffix(".jsonl.1"))

        logger.info(f"Rotated event log: {self._log_path}")

    def on_event(self, event: ChainEvent) -> None:
        if not self.config.enabled or self._log_path is None:
            return

        record = {**event.to_dict(), "session_start": self._session_start}
        line = json.dumps(record, default=str)
        with self._lock:
            self._check_rotation()
            try:
                with open(self._log_path, "a") as f:
                    f.write(line + "\n")
                self._event_count += 1
            except OSError as e:
                logger.warning(f"Failed to write chain event: {e}")

    def read_events(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Read back logged events from the current file, oldest first."""
        if self._log_path is None or not self._log_path.exists():
            return []

        events = []
        with open(self._log_path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed event line in {self._log_path}")
        if limit is not None:
            events = events[-limit:]
        return events


__all__ = [
    "ChainCompletedPayload",
    "ChainEvent",
    "ChainEventPayload",
    "ChainEventType",
    "ChainFailedPayload",
    "ChainObserver",
    "ChainStartedPayload",
    "ChainStoppedPayload",
    "EventBus",
    "EventLogConfig",
    "JsonlEventSink",
    "LoggingObserver",
    "Observer",
    "RoleCompletedPayload",
    "RoleStartedPayload",
]
