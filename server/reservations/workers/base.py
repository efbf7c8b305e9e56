"""Periodic background worker loop."""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..core.observability import get_logger

logger = get_logger(__name__)


class BaseWorker(ABC):
    """
    A task that calls ``process()`` every ``interval_seconds`` until stopped.

    A failing iteration is logged and the loop keeps going; after repeated
    failures the wait between attempts doubles, up to ``max_backoff_seconds``.
    """

    def __init__(self, name: str, interval_seconds: float = 60, max_backoff_seconds: Optional[float] = None):
        self.name = name
        self.interval_seconds = interval_seconds
        self.max_backoff_seconds = max_backoff_seconds or interval_seconds * 8
        self.iterations = 0
        self.consecutive_failures = 0
        self.last_run_at: Optional[datetime] = None
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @abstractmethod
    async def process(self) -> None:
        """Run one iteration."""

    async def start(self) -> None:
        if self.is_running:
            logger.warning("worker_already_running", worker=self.name)
            return

        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=f"worker:{self.name}")
        logger.info("worker_started", worker=self.name, interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Signal the loop and wait for the current iteration to finish."""
        if not self.is_running:
            logger.warning("worker_not_running", worker=self.name)
            return

        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._task = None
        logger.info("worker_stopped", worker=self.name, iterations=self.iterations)

    def _next_delay(self, elapsed: float) -> float:
        if self.consecutive_failures:
            backoff = self.interval_seconds * 2 ** (self.consecutive_failures - 1)
            return min(backoff, self.max_backoff_seconds)
        return max(0.0, self.interval_seconds - elapsed)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            started = time.monotonic()
            self.last_run_at = datetime.utcnow()
            try:
                await self.process()
            except Exception as e:
                self.consecutive_failures += 1
                logger.error(
                    "worker_error",
                    worker=self.name,
                    error=str(e),
                    consecutive_failures=self.consecutive_failures,
                    exc_info=True,
                )
            else:
                self.consecutive_failures = 0
                logger.debug(
                    "worker_iteration_completed",
                    worker=self.name,
                    duration_seconds=round(time.monotonic() - started, 3),
                )
            finally:
                self.iterations += 1

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._next_delay(time.monotonic() - started))
            except asyncio.TimeoutError:
                continue
