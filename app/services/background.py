# app/services/background.py
"""
Bounded fire-and-forget task runner.

The webhook hands graph-mirror and metrics work to submit() and returns
without waiting. Each task gets a timeout and runs under a concurrency
semaphore; once max_pending tasks are in flight new submissions are dropped.
Timeouts, failures and drops go to the dead-letter logger.
"""

import asyncio
import logging
from typing import Callable, Optional, Set
from app.config import settings
from app.utils.logger import get_logger, DEADLETTER_LOGGER

logger = get_logger(__name__)
deadletter = logging.getLogger(DEADLETTER_LOGGER)


class BackgroundDispatcher:
    def __init__(self, max_pending: int = 200, max_concurrency: int = 10, timeout: float = 10.0):
        self.max_pending = max_pending
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop = None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, func: Callable, *args, **kwargs) -> Optional[asyncio.Task]:
        """Schedule func(*args, **kwargs) on the running loop. Never blocks, never raises."""
        if len(self._tasks) >= self.max_pending:
            deadletter.warning(f"[BACKGROUND] Dropped '{name}': {len(self._tasks)} tasks already pending")
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            deadletter.error(f"[BACKGROUND] Could not schedule '{name}': {e}")
            return None
        task = loop.create_task(self._run(name, func, args, kwargs), name=name)
        # Held until done so the loop cannot collect a running task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, func: Callable, args: tuple, kwargs: dict):
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._semaphore_loop = loop
        try:
            async with self._semaphore:
                await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            deadletter.error(f"[BACKGROUND] '{name}' timed out after {self.timeout}s")
        except asyncio.CancelledError:
            deadletter.warning(f"[BACKGROUND] '{name}' cancelled")
            raise
        except Exception as e:
            deadletter.error(f"[BACKGROUND] '{name}' failed: {e}", exc_info=True)

    async def drain(self, timeout: float = 5.0):
        """Wait for in-flight tasks (shutdown). Whatever is left after timeout is cancelled."""
        if not self._tasks:
            return
        logger.info(f"[BACKGROUND] Draining {len(self._tasks)} background tasks (timeout: {timeout}s)...")
        done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"[BACKGROUND] {len(still_running)} tasks cancelled at shutdown")


dispatcher = BackgroundDispatcher(
    max_pending=settings.BACKGROUND_MAX_PENDING,
    max_concurrency=settings.BACKGROUND_MAX_CONCURRENCY,
    timeout=settings.BACKGROUND_TASK_TIMEOUT_SECONDS,
)
