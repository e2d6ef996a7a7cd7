import asyncio
from typing import Awaitable, Callable, Optional

from event_jobs.core.telemetry import get_logger

logger = get_logger(__name__)


class RepeatingTask:
    """
    Cancellable periodic callback.

    The callback runs once immediately (unless ``run_immediately`` is False)
    and then every ``interval_seconds``. A tick never overlaps the previous one
    of the same task. Exceptions from a tick are logged and do not stop the
    schedule.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        interval_seconds: float,
        run_immediately: bool = True,
    ):
        self.name = name
        self.callback = callback
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "RepeatingTask":
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"repeating:{self.name}")
        return self

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()

    async def wait_cancelled(self) -> None:
        """Cancel and wait until the task has finished."""
        task = self._task
        self.cancel()
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval_seconds)

        while True:
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Unhandled error in scheduled task {self.name}: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
