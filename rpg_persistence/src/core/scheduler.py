"""
Recurring background jobs.

Each job owns exactly one asyncio task. Starting a job that is already running
cancels the previous task first, so restarts never stack duplicate timers.
"""

import asyncio
import traceback
from typing import Awaitable, Callable, Optional

from rpg_persistence.src.core.logging_config import get_logger

logger = get_logger(__name__)


class RecurringJob:
    """Runs ``action`` every ``interval`` seconds until stopped."""

    def __init__(
        self,
        name: str,
        interval: float,
        action: Callable[[], Awaitable[None]],
    ):
        if interval <= 0:
            raise ValueError(f"Job '{name}' needs a positive interval, got {interval}")
        self.name = name
        self.interval = interval
        self._action = action
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start (or restart) the job on the running event loop."""
        if self._task is not None:
            self._task.cancel()
            logger.debug("Restarting recurring job", extra={"job": self.name})
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"recurring:{self.name}"
        )
        logger.info(
            "Recurring job started",
            extra={"job": self.name, "interval_seconds": self.interval},
        )

    async def stop(self) -> None:
        """Cancel the job and wait for it to unwind."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Recurring job stopped", extra={"job": self.name})

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # The action logs its own failures; this keeps the timer alive
                logger.error(
                    "Recurring job iteration failed",
                    extra={
                        "job": self.name,
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )
            finally:
                self.runs += 1
