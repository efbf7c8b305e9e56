"""Worker manager for coordinating background tasks."""

import asyncio
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.cache import CacheBackend
from ..core.config import Settings, settings
from ..core.events import EventDispatcher
from ..core.observability import get_logger
from ..services.payment_gateway import PaymentGateway
from .base import BaseWorker
from .reconciliation_worker import ReconciliationWorker

logger = get_logger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping, and monitoring of all background workers.
    """

    def __init__(self):
        """Initialize the worker manager."""
        self.workers: Dict[str, BaseWorker] = {}

    def register(self, key: str, worker: BaseWorker) -> None:
        self.workers[key] = worker

    async def start_all(self) -> None:
        """Start all workers."""
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error("worker_start_failed", worker=name, error=str(e), exc_info=True)

        logger.info("workers_started", count=len(self.workers))

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        running = {name: worker for name, worker in self.workers.items() if worker.is_running}
        results = await asyncio.gather(*(worker.stop() for worker in running.values()), return_exceptions=True)

        for name, result in zip(running.keys(), results):
            if isinstance(result, Exception):
                logger.error("worker_stop_failed", worker=name, error=str(result))

        logger.info("workers_stopped", count=len(running))

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map worker names to their running status."""
        return {name: worker.is_running for name, worker in self.workers.items()}


def build_worker_manager(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway,
    cache: Optional[CacheBackend] = None,
    events: Optional[EventDispatcher] = None,
    config: Settings = settings,
) -> WorkerManager:
    """Create a manager with the application's background workers registered."""
    manager = WorkerManager()
    manager.register(
        "reconciliation",
        ReconciliationWorker(
            session_factory,
            gateway,
            cache=cache,
            events=events,
            interval_seconds=config.reconciliation_interval_seconds,
            config=config,
        ),
    )
    return manager
