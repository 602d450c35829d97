"""
Debounced, coalescing background work.

Rapid edits to the same note should cause one regeneration, not one per
keystroke-save.  :class:`DebouncedCoalescer` collects entity ids into a
pending set and processes the whole set once a fixed delay has passed since
the *first* schedule of the cycle:

    schedule(1) -> timer armed (delay)
    schedule(1) -> set insertion only, timer untouched
    schedule(2) -> set insertion only
    ... delay elapses -> pending swapped out, {1, 2} drained concurrently

The timer is never restarted by later calls, so a continuous stream of
edits cannot starve processing.  The pending set and the armed timer are
independent pieces of state: a schedule that arrives while a batch is
draining arms a new timer and lands in the next batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

logger = logging.getLogger(__name__)

CoalescerState = Literal["idle", "armed", "draining"]


class DebouncedCoalescer:
    """Per-pipeline debounce queue keyed by entity id."""

    def __init__(self, name: str, process: Callable[[int], Awaitable[Any]], delay: float = 0.3):
        """
        Args:
            name: Pipeline name, used in logs and stats
            process: Coroutine function run once per drained id
            delay: Seconds between the first schedule of a cycle and the drain
        """
        self.name = name
        self.delay = delay
        self._process = process
        self._pending: set[int] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._drains: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._stats = {"scheduled": 0, "batches": 0, "processed": 0, "errors": 0}

    @property
    def state(self) -> CoalescerState:
        if self._timer is not None:
            return "armed"
        if self._drains:
            return "draining"
        return "idle"

    @property
    def pending(self) -> frozenset[int]:
        return frozenset(self._pending)

    def schedule(self, entity_id: int) -> None:
        """Queue ``entity_id``; arms the timer only if none is armed."""
        if self._closed:
            logger.debug(f"[{self.name}] closed, ignoring schedule of {entity_id}")
            return

        self._pending.add(entity_id)
        self._stats["scheduled"] += 1
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.delay, self._fire)
            self._idle.clear()

    def _fire(self) -> None:
        batch = self._pending
        self._pending = set()
        self._timer = None

        if not batch:
            self._update_idle()
            return

        task = asyncio.get_running_loop().create_task(self._drain(batch), name=f"{self.name}-drain")
        self._drains.add(task)
        task.add_done_callback(self._drain_done)

    async def _drain(self, batch: set[int]) -> None:
        self._stats["batches"] += 1
        logger.debug(f"[{self.name}] draining {len(batch)} item(s)")
        await asyncio.gather(*(self._process_one(entity_id) for entity_id in sorted(batch)))

    async def _process_one(self, entity_id: int) -> None:
        try:
            await self._process(entity_id)
            self._stats["processed"] += 1
        except Exception as e:
            # One entity's failure never blocks the rest of the batch
            self._stats["errors"] += 1
            logger.warning(f"[{self.name}] processing {entity_id} failed: {e}")

    def _drain_done(self, task: asyncio.Task) -> None:
        self._drains.discard(task)
        self._update_idle()

    def _update_idle(self) -> None:
        if self._timer is None and not self._drains:
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no drain is in flight."""
        await self._idle.wait()

    async def close(self) -> None:
        """Stop accepting work, cancel an armed timer and wait for in-flight drains."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            if self._pending:
                logger.info(f"[{self.name}] dropping {len(self._pending)} pending item(s) on close")
            self._pending.clear()
        if self._drains:
            await asyncio.gather(*list(self._drains), return_exceptions=True)
        self._update_idle()

    def get_stats(self) -> dict[str, Any]:
        return {"name": self.name, "state": self.state, "pending": len(self._pending), **self._stats}
