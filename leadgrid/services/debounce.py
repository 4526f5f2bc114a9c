from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any

"""Per-key debounced writes.

Scheduling a key cancels that key's pending write and replaces it, so only
the last value within `delay` seconds reaches `action`. Keys are independent.
"""

__all__ = [
    "KeyedDebouncer",
]

logger = logging.getLogger(__name__)


class KeyedDebouncer:
    def __init__(self, delay: float, action: Callable[[Hashable, Any], Awaitable[None]]) -> None:
        self.delay = delay
        self._action = action
        self._tasks: dict[Hashable, asyncio.Task[None]] = {}
        self._pending: dict[Hashable, Any] = {}

    @property
    def pending_keys(self) -> list[Hashable]:
        return list(self._pending)

    def schedule(self, key: Hashable, value: Any) -> None:
        """Schedule `action(key, value)` after `delay`; must run inside an event loop."""
        task = self._tasks.pop(key, None)
        if task is not None:
            task.cancel()
        self._pending[key] = value
        self._tasks[key] = asyncio.get_running_loop().create_task(self._fire_later(key))

    async def _fire_later(self, key: Hashable) -> None:
        await asyncio.sleep(self.delay)
        self._tasks.pop(key, None)
        value = self._pending.pop(key)
        await self._run(key, value)

    async def _run(self, key: Hashable, value: Any) -> None:
        try:
            await self._action(key, value)
        except Exception as e:
            logger.warning("debounced write for %s failed: %s", key, e)

    async def flush(self) -> None:
        """Run every pending write now."""
        pending = list(self._pending.items())
        self.cancel_all()
        for key, value in pending:
            await self._run(key, value)

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        self._pending.clear()
