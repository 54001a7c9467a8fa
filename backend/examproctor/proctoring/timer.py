import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ExamCountdown:
    """Counts down the remaining exam time and calls ``on_expire`` once at zero."""

    def __init__(self, seconds: float, on_expire: Callable[[], Awaitable[Any]], tick_seconds: float = 1.0):
        self.seconds = max(0.0, float(seconds))
        self.on_expire = on_expire
        self.tick_seconds = tick_seconds
        self.expired = False
        self._deadline: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def remaining(self) -> int:
        if self._deadline is None:
            return int(math.ceil(self.seconds))
        return max(0, int(math.ceil(self._deadline - asyncio.get_running_loop().time())))

    def format_remaining(self) -> str:
        minutes, seconds = divmod(self.remaining, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def start(self):
        if self.running or self.expired:
            return
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.seconds
        self._task = loop.create_task(self._run())

    async def stop(self):
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise

    async def _run(self):
        loop = asyncio.get_running_loop()
        while loop.time() < self._deadline:
            await asyncio.sleep(min(self.tick_seconds, self._deadline - loop.time()))

        self.expired = True
        logger.info("Exam time is up, submitting")
        try:
            await self.on_expire()
        except Exception as e:
            logger.error(f"Time-expiry submission failed: {e}", exc_info=True)
