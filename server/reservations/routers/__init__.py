"""FastAPI routers package."""

from .catalog import router as catalog_router
from .health import router as health_router
from .metrics import router as metrics_router
from .reservation import router as reservation_router
from .webhooks import router as webhooks_router

__all__ = [
    "catalog_router",
    "health_router",
    "metrics_router",
    "reservation_router",
    "webhooks_router",
]
