"""
Change Notifier
===============

Collapses bursts of internal state changes (toggles, refresh batches, imports)
into a single "rules changed" signal for external listeners.
"""

import inspect
from typing import Any, Awaitable, Callable, List, Union

from loguru import logger

from solidrules.utils.debounce import TrailingDebounce

Listener = Callable[[], Union[None, Awaitable[Any]]]


class ChangeNotifier:
    def __init__(self, delay: float = 0.1):
        self._listeners: List[Listener] = []
        self._debounce = TrailingDebounce(delay, self.fire_now, name="change-notifier")

    @property
    def fire_count(self) -> int:
        return self._debounce.fire_count

    def on_changed(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        """Schedule one coalesced change signal."""
        self._debounce.trigger()

    async def fire_now(self) -> None:
        """Call every listener once. A failing listener does not stop the others."""
        for listener in list(self._listeners):
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Change listener failed")

    async def flush(self) -> None:
        await self._debounce.flush()

    async def close(self) -> None:
        await self._debounce.close()
        self._listeners.clear()

