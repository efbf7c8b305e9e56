"""Health check router."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import CacheBackend
from ..core.dependencies import DatabaseSession, get_cache, get_payment_gateway
from ..schemas.health import HealthResponse, HealthStatus
from ..services.payment_gateway import MockPaymentGateway, PaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])

CACHE_PROBE_KEY = "health:probe"


@router.post("/ping", response_model=HealthResponse)
async def health_ping(
    db: AsyncSession = DatabaseSession,
    cache: CacheBackend = Depends(get_cache),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> JSONResponse:
    """
    Health check endpoint.

    Probes the database and the cache; a failing probe reports ``degraded``
    rather than an error so load balancers can tell the two apart.
    """
    checks = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning("Database health probe failed", extra={"error": str(e)})
        checks["database"] = "error"

    try:
        await cache.get(CACHE_PROBE_KEY)
        checks["cache"] = "ok"
    except Exception as e:
        logger.warning("Cache health probe failed", extra={"error": str(e)})
        checks["cache"] = "error"

    degraded = any(value != "ok" for value in checks.values())
    response_data = HealthResponse(
        status=HealthStatus.DEGRADED if degraded else HealthStatus.HEALTHY,
        timestamp=datetime.utcnow(),
        payment_mode="mock" if isinstance(gateway, MockPaymentGateway) else "stripe",
        checks=checks,
    )

    logger.debug(
        "Health check requested",
        extra={"status": response_data.status.value, "checks": checks}
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
