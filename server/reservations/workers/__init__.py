"""Background workers for the reservations service."""

from .base import BaseWorker
from .manager import WorkerManager, build_worker_manager
from .reconciliation_worker import ReconciliationWorker

__all__ = ["BaseWorker", "ReconciliationWorker", "WorkerManager", "build_worker_manager"]
