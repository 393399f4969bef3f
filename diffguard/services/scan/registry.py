"""Task registry — one supervised asyncio task per running scan.

The HTTP layer starts a scan and returns at once; the registry keeps the
task reachable so an explicit cancel request, or process shutdown, can
stop it.  Finished tasks remove themselves.
"""

import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)


class ScanTaskRegistry:
    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def start(self, scan_id, coro: Coroutine) -> asyncio.Task:
        """Schedule *coro* as the task for *scan_id*."""
        key = str(scan_id)
        if self.is_running(key):
            coro.close()
            raise ValueError(f"Scan {key} is already running")
        task = asyncio.create_task(coro, name=f"scan-{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        return task

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.info("Scan task %s cancelled", key)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scan task %s ended with %s: %s", key, type(exc).__name__, exc)

    def is_running(self, scan_id) -> bool:
        task = self._tasks.get(str(scan_id))
        return task is not None and not task.done()

    def cancel(self, scan_id) -> bool:
        """Request cancellation; False when no task is running for *scan_id*."""
        task = self._tasks.get(str(scan_id))
        if task is None or task.done():
            return False
        task.cancel()
        return True

    @property
    def running(self) -> list[str]:
        return [k for k, t in self._tasks.items() if not t.done()]

    async def shutdown(self) -> None:
        """Cancel every tracked scan and wait for them to wind down."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d running scan(s) on shutdown", len(tasks))
        self._tasks.clear()
