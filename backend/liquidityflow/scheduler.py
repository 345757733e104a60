"""Periodic and delayed task scheduling on the running event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class TaskHandle:
    """Cancelable handle for a scheduled job."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """Stop the job. Safe to call more than once or from inside the job."""
        self._cancelled = True
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()


class Scheduler:
    """Owns every timer started by the hub, adapters and broker.

    ``every()`` runs a job on a fixed interval, ``later()`` runs it once after
    a delay. Jobs that raise are logged and the timer keeps going. After
    ``shutdown()`` no job fires again, including ones already scheduled.
    """

    def __init__(self) -> None:
        self._handles: set[TaskHandle] = set()
        self._closed = False

    def every(self, interval: float, job: Job, name: str = "periodic") -> TaskHandle:
        """Run ``job`` every ``interval`` seconds; the first run is after one interval."""
        handle = TaskHandle(name)
        self._spawn(handle, self._run_every(handle, interval, job))
        return handle

    def later(self, delay: float, job: Job, name: str = "delayed") -> TaskHandle:
        """Run ``job`` once after ``delay`` seconds."""
        handle = TaskHandle(name)
        self._spawn(handle, self._run_later(handle, delay, job))
        return handle

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active(self) -> int:
        """Number of jobs that can still fire."""
        return sum(1 for h in self._handles if not h.cancelled and not h.done)

    async def shutdown(self) -> None:
        """Cancel every scheduled job and wait for them to unwind. Idempotent."""
        if self._closed:
            return
        self._closed = True
        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        tasks = [h._task for h in handles if h._task is not None and h._task is not asyncio.current_task()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._handles.clear()
        logger.debug("Scheduler stopped (%d jobs cancelled)", len(handles))

    # --- Internal ---

    def _spawn(self, handle: TaskHandle, coro: Awaitable[None]) -> None:
        if self._closed:
            handle._cancelled = True
            coro.close()  # type: ignore[attr-defined]
            logger.debug("Scheduler closed, ignoring job %s", handle.name)
            return
        handle._task = asyncio.create_task(coro, name=handle.name)
        self._handles.add(handle)
        handle._task.add_done_callback(lambda _t: self._handles.discard(handle))

    async def _run_every(self, handle: TaskHandle, interval: float, job: Job) -> None:
        while not handle.cancelled:
            await asyncio.sleep(interval)
            if handle.cancelled or self._closed:
                return
            try:
                await job()
            except Exception:
                logger.exception("Scheduled job %s failed", handle.name)

    async def _run_later(self, handle: TaskHandle, delay: float, job: Job) -> None:
        await asyncio.sleep(delay)
        if handle.cancelled or self._closed:
            return
        try:
            await job()
        except Exception:
            logger.exception("Delayed job %s failed", handle.name)
