"""
toolcore.connections.timers - Cancellable Delayed Tasks

DelayedTask runs a callback once after a delay on its own asyncio task.
TimerRegistry keeps at most one pending DelayedTask per key: scheduling
a new one always cancels the previous one first.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None] | None]


class DelayedTask:
    """
    Fire a callback once after delay_ms, unless cancelled first.

    cancel() only affects a timer that has not fired yet; once the callback
    has started it runs to completion.

    Example:
        >>> timer = DelayedTask(500, lambda: print("fired"))
        >>> timer.cancel()
        True
    """

    def __init__(self, delay_ms: float, callback: TimerCallback, name: str | None = None) -> None:
        self.delay_ms = delay_ms
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._task = asyncio.create_task(self._run(), name=name)

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        self._fired = True
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error(
                f"Delayed task {self._task.get_name()} failed",
                exc_info=True,
                extra={"delay_ms": self.delay_ms},
            )

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        """True while the timer is still waiting to fire."""
        return not self._fired and not self._cancelled and not self._task.done()

    def cancel(self) -> bool:
        """Cancel the timer if it has not fired. Returns True if it was pending."""
        if not self.pending:
            return False
        self._cancelled = True
        self._task.cancel()
        return True

    async def wait(self) -> None:
        """Wait until the timer has fired and its callback finished, or was cancelled."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class TimerRegistry:
    """
    Keyed DelayedTasks with an at-most-one-pending-per-key guarantee.

    A timer removes itself from the registry the moment it fires, so its
    callback may schedule a successor for the same key without cancelling
    itself.
    """

    def __init__(self, name: str = "timer") -> None:
        self._name = name
        self._timers: dict[str, DelayedTask] = {}

    def schedule(self, key: str, delay_ms: float, callback: TimerCallback) -> DelayedTask:
        """Cancel any pending timer for key, then schedule callback after delay_ms."""
        self.cancel(key)

        async def fire() -> None:
            if self._timers.get(key) is timer:
                del self._timers[key]
            result = callback()
            if inspect.isawaitable(result):
                await result

        timer = DelayedTask(delay_ms, fire, name=f"{self._name}:{key}")
        self._timers[key] = timer
        return timer

    def cancel(self, key: str) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        return timer.cancel()

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._timers):
            if self.cancel(key):
                cancelled += 1
        return cancelled

    def get(self, key: str) -> DelayedTask | None:
        return self._timers.get(key)

    def is_pending(self, key: str) -> bool:
        timer = self._timers.get(key)
        return timer is not None and timer.pending

    def __len__(self) -> int:
        return sum(1 for t in self._timers.values() if t.pending)

    def __contains__(self, key: str) -> bool:
        return self.is_pending(key)
