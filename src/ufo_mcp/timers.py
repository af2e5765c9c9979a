"""Deferred expiry of timed effect layers.

A timed layer is popped when its duration elapses, but only if it is still
the top of the stack. A layer removed earlier by a manual stop must not take
an unrelated layer down with it when its timer fires.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from .state import EffectStackEntry, StateManager

logger = logging.getLogger(__name__)

# Receives the entry to restore, or None when nothing is left
RestoreCallback = Callable[[Optional[EffectStackEntry]], Awaitable[None]]


class EffectTimers:
    """Owns the asyncio tasks that expire timed layers."""

    def __init__(self, state: StateManager):
        self._state = state
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, entry: EffectStackEntry, duration_ms: int, on_expire: RestoreCallback) -> asyncio.Task:
        """Expire ``entry`` after ``duration_ms``. Must be called from a running loop."""
        task = asyncio.create_task(self._expire(entry, duration_ms, on_expire))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _expire(self, entry: EffectStackEntry, duration_ms: int, on_expire: RestoreCallback):
        await asyncio.sleep(duration_ms / 1000.0)

        popped, restore = self._state.pop_effect_if_current(entry.token)
        if not popped:
            logger.debug("Timer for '%s' fired after it was already removed", entry.name)
            return

        logger.info("Effect '%s' expired after %dms", entry.name, duration_ms)
        try:
            await on_expire(restore)
        except Exception:
            # Nobody awaits this task; the layer is already gone from the stack
            logger.exception("Restoring after '%s' expired failed", entry.name)

    async def cancel_all(self):
        """Cancel outstanding timers (server shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
