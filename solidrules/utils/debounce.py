"""
Trailing Debounce
=================

A timer primitive that collapses a burst of triggers into a single run of the
wrapped action, fired once the burst has been quiet for ``delay`` seconds.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Set, Union

from loguru import logger

Action = Callable[[], Union[None, Awaitable[Any]]]


class TrailingDebounce:
    """Cancel-and-rearm timer owned by a single component.

    Each ``trigger()`` cancels the pending timer and schedules a new one, so only
    the last trigger of a burst fires the action. An action that is already
    running is never cancelled; runs are serialized so two passes never overlap.
    """

    def __init__(self, delay: float, action: Action, name: str = "debounce"):
        self.delay = delay
        self.name = name
        self._action = action
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._closed = False
        self.fire_count = 0

    @property
    def pending(self) -> bool:
        """True while a timer is armed and has not fired yet."""
        return self._handle is not None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def trigger(self) -> None:
        """(Re)arm the timer. Must be called from inside the running event loop."""
        if self._closed:
            logger.debug("{} is closed, ignoring trigger", self.name)
            return
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        """Disarm the pending timer without running the action."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Run a pending action now instead of waiting for the timer, then wait for in-flight runs."""
        if self._handle is not None:
            self.cancel()
            await self._run()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait until no action run is in progress."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Dispose of the timer; in-flight runs are allowed to complete."""
        self._closed = True
        self.cancel()
        await self.wait_idle()

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        async with self._lock:
            self.fire_count += 1
            try:
                result = self._action()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("{} action failed", self.name)
