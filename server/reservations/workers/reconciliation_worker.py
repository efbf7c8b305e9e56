"""Background worker releasing inventory held by unpaid reservations."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.cache import CacheBackend
from ..core.config import Settings, settings
from ..core.events import EventDispatcher
from ..core.observability import get_logger
from ..services.payment_gateway import PaymentGateway
from ..services.reservation_service import ReconciliationReport, ReservationService
from .base import BaseWorker

logger = get_logger(__name__)


class ReconciliationWorker(BaseWorker):
    """
    Periodically runs the reservation service's stale-hold sweep.

    Each iteration uses its own session so a slow sweep never shares a
    transaction with request handling.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        cache: Optional[CacheBackend] = None,
        events: Optional[EventDispatcher] = None,
        interval_seconds: int = 60,
        config: Settings = settings,
    ):
        super().__init__(name="Reconciliation", interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.gateway = gateway
        self.cache = cache
        self.events = events
        self.config = config
        self.last_report: Optional[ReconciliationReport] = None

    async def process(self) -> None:
        """Release stale holds once."""
        async with self.session_factory() as db:
            service = ReservationService(
                db, self.gateway, cache=self.cache, events=self.events, config=self.config
            )
            report = await service.release_stale_holds()

        self.last_report = report
        if report.released or report.confirmed or report.errors:
            logger.info(
                "stale_holds_reconciled",
                worker=self.name,
                expired=report.expired,
                released_failed=report.released_failed,
                confirmed=report.confirmed,
                errors=report.errors,
            )
