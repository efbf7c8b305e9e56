"""FastAPI dependencies for database sessions, caller identity, and services."""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..services.catalog_service import CatalogService
from ..services.payment_gateway import PaymentGateway
from ..services.reservation_service import ReservationService
from ..services.webhook_service import WebhookService
from .cache import CacheBackend
from .database import get_async_session
from .events import EventDispatcher
from .exceptions import AuthenticationError


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


async def get_current_user(
    user_id: Optional[str] = Header(None, alias="X-User-Id")
) -> str:
    """
    Identity dependency reading the caller set by the upstream gateway.

    Returns:
        str: Authenticated user ID

    Raises:
        AuthenticationError: If the header is missing or blank
    """
    if not user_id or not user_id.strip():
        raise AuthenticationError("X-User-Id header missing")
    return user_id.strip()


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_cache(request: Request) -> CacheBackend:
    return request.app.state.cache


def get_event_bus(request: Request) -> EventDispatcher:
    return request.app.state.event_bus


def get_reservation_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    cache: CacheBackend = Depends(get_cache),
    events: EventDispatcher = Depends(get_event_bus),
) -> ReservationService:
    return ReservationService(db, gateway, cache=cache, events=events)


def get_catalog_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
) -> CatalogService:
    return CatalogService(db, cache=cache)


def get_webhook_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    reservations: ReservationService = Depends(get_reservation_service),
) -> WebhookService:
    return WebhookService(db, gateway, reservations)


CurrentUser = Depends(get_current_user)
DatabaseSession = Depends(get_db)
Reservations = Depends(get_reservation_service)
Catalog = Depends(get_catalog_service)
Webhooks = Depends(get_webhook_service)
