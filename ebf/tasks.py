"""
Repeating background task bound to an owner's lifecycle.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Runs *callback* every *interval* seconds between start() and cancel()."""

    def __init__(self, callback: Callable[[], Any], interval: float, name: str = "repeating-task"):
        self.callback = callback
        self.interval = interval
        self.name = name
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.runs += 1
            try:
                result = self.callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("%s failed", self.name)
