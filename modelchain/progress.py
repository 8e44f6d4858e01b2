"""
Progress reporting and cancellation for chain execution.

Provides the per-role progress update handed to the caller's callback and
the cooperative cancellation token used by stop_chain.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Protocol, Union, runtime_checkable


@dataclass
class ProgressUpdate:
    """
    Progress update event.

    Emitted once per role, before the role's model is invoked.
    """

    chain_id: str
    role: str
    model: str
    step: int
    total_steps: int

    @property
    def percent(self) -> float:
        if self.total_steps <= 0:
            return 100.0
        return round(self.step / self.total_steps * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["percent"] = self.percent
        return data


@runtime_checkable
class ProgressListener(Protocol):
    """
    Protocol for progress listeners.

    Implement this to receive progress updates during chain execution.
    """

    def on_progress(self, update: ProgressUpdate) -> None:
        """
        Called before each role runs.

        Args:
            update: Progress update information
        """
        ...


ProgressCallback = Union[
    Callable[[ProgressUpdate], None],
    Callable[[ProgressUpdate], Awaitable[None]],
    ProgressListener,
]


async def report_progress(callback: ProgressCallback | None, update: ProgressUpdate) -> None:
    """Deliver an update to a plain callable, a coroutine function or a listener."""
    if callback is None:
        return
    if isinstance(callback, ProgressListener):
        result = callback.on_progress(update)
    else:
        result = callback(update)
    if inspect.isawaitable(result):
        await result


class CancellationToken:
    """
    Token for checking and requesting cancellation.

    cancel() may be called from any thread; waiters are woken on the event
    loop that first awaited the token.
    """

    def __init__(self) -> None:
        """Initialize cancellation token."""
        self._cancelled = False
        self._lock = threading.Lock()
        self._event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _bind(self) -> asyncio.Event:
        with self._lock:
            if self._event is None:
                self._loop = asyncio.get_running_loop()
                self._event = asyncio.Event()
                if self._cancelled:
                    self._event.set()
            return self._event

    def cancel(self) -> None:
        """Request cancellation."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            event, loop = self._event, self._loop

        if event is None or loop is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            event.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._cancelled

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._bind().wait()

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """
        Wait for cancellation.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            True if cancelled, False if timeout
        """
        try:
            await asyncio.wait_for(self.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False


__all__ = [
    "CancellationToken",
    "ProgressCallback",
    "ProgressListener",
    "ProgressUpdate",
    "report_progress",
]
