"""
Scheduler - one-shot and periodic async timers with cancellable handles
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

AsyncCallback = Callable[..., Awaitable[None]]


class ScheduledTask:
    """Handle for a timer created by a Scheduler"""

    def __init__(self, name: str, periodic: bool = False):
        self.name = name
        self.periodic = periodic
        self.cancelled = False
        self.done = False
        self._task: Optional[asyncio.Task] = None

    def cancel(self):
        if self.done or self.cancelled:
            return
        self.cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.done)

    def __repr__(self):
        state = "cancelled" if self.cancelled else "done" if self.done else "pending"
        return f"<ScheduledTask {self.name} {state}>"


async def run_guarded(name: str, callback: AsyncCallback, *args):
    """Await a timer callback, logging instead of raising"""
    try:
        await callback(*args)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception(f"Scheduled task '{name}' failed")


class Scheduler:
    """asyncio-backed timers used by every background job in the tracker.

    All callbacks are coroutine functions. A failing callback is logged and
    never stops a periodic timer.
    """

    def __init__(self):
        self._handles: Set[ScheduledTask] = set()

    def now(self) -> float:
        return time.time()

    async def sleep(self, delay: float):
        await asyncio.sleep(delay)

    def call_later(self, delay: float, callback: AsyncCallback, *args, name: str = None) -> ScheduledTask:
        handle = ScheduledTask(name or getattr(callback, '__name__', 'task'))

        async def runner():
            try:
                await asyncio.sleep(delay)
                await run_guarded(handle.name, callback, *args)
            finally:
                handle.done = True
                self._handles.discard(handle)

        handle._task = asyncio.create_task(runner())
        self._handles.add(handle)
        return handle

    def call_every(self, interval: float, callback: AsyncCallback, *args,
                   first_delay: float = None, name: str = None) -> ScheduledTask:
        handle = ScheduledTask(name or getattr(callback, '__name__', 'task'), periodic=True)
        delay = interval if first_delay is None else first_delay

        async def runner():
            try:
                await asyncio.sleep(delay)
                while not handle.cancelled:
                    await run_guarded(handle.name, callback, *args)
                    await asyncio.sleep(interval)
            finally:
                handle.done = True
                self._handles.discard(handle)

        handle._task = asyncio.create_task(runner())
        self._handles.add(handle)
        return handle

    def pending(self) -> int:
        return len(self._handles)

    def cancel_all(self):
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
