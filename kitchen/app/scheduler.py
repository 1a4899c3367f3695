import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("letmecook-kitchen")

Callback = Callable[[], Any]


class PeriodicTask:
    """Run ``fn`` every ``interval`` seconds until stopped.

    A failing run is logged and the loop carries on with the next one.
    """

    def __init__(
        self, name: str, interval: float, fn: Callback, immediate: bool = False
    ):
        self.name = name
        self.interval = interval
        self.fn = fn
        self.immediate = immediate
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        if self.immediate:
            await self._run_once()
        while True:
            await asyncio.sleep(self.interval)
            await self._run_once()

    async def _run_once(self) -> None:
        try:
            result = self.fn()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Periodic task %s failed", self.name)
