"""FastAPI application factory for the reservations service."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .core.cache import build_cache
from .core.config import Settings, settings
from .core.database import async_session_factory, close_db, init_db
from .core.events import InProcessEventBus
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    request_validation_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import catalog, health, metrics, reservation, webhooks
from .services.payment_gateway import build_payment_gateway
from .workers.manager import WorkerManager, build_worker_manager

setup_structured_logging()

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as an RFC 9457 problem document."""
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


def register_routers(app: FastAPI) -> None:
    for module in (health, catalog, reservation, webhooks, metrics):
        app.include_router(module.router)


async def _start_services(app: FastAPI) -> WorkerManager:
    setup_tracing()
    setup_metrics()
    instrument_sqlalchemy()

    await init_db()

    manager = build_worker_manager(
        async_session_factory,
        app.state.payment_gateway,
        cache=app.state.cache,
        events=app.state.event_bus,
        config=app.state.settings,
    )
    await manager.start_all()
    return manager


async def _stop_services(app: FastAPI, manager: WorkerManager) -> None:
    # Workers first so no sweep is mid-transaction when the pool closes
    await manager.stop_all()
    await app.state.event_bus.drain()
    await app.state.cache.close()
    await close_db()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config = app.state.settings
    logger.info(
        "Starting reservations service",
        extra={
            "environment": config.environment,
            "payments": "stripe" if config.payments_enabled else "mock",
            "cache": "redis" if config.redis_url else "memory",
        },
    )

    try:
        app.state.worker_manager = await _start_services(app)
    except Exception as e:
        logger.error("Failed to start reservations service", extra={"error": str(e)})
        raise

    logger.info("Reservations service ready")

    yield

    try:
        await _stop_services(app, app.state.worker_manager)
    except Exception as e:
        logger.error("Error while stopping reservations service", extra={"error": str(e)})

    logger.info("Reservations service stopped")


def create_app(config: Settings = settings) -> FastAPI:
    """
    Build the application and its shared collaborators.

    The payment gateway, cache and event bus live on ``app.state`` so request
    handlers and background workers share one instance of each.
    """
    app = FastAPI(
        title="Festival Reservations API",
        description="RPC-over-HTTP API for festival experience bookings and product orders with "
                    "versioned inventory, payment holds and reconciliation",
        version=SERVICE_VERSION,
        debug=config.debug,
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )

    app.state.settings = config
    app.state.payment_gateway = build_payment_gateway(config)
    app.state.cache = build_cache(config)
    app.state.event_bus = InProcessEventBus()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate"],
    )
    setup_middleware(app, enable_logging=True)
    instrument_fastapi(app)

    register_exception_handlers(app)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Liveness",
        description="Liveness probe; does not touch the database",
        response_model=dict,
    )
    async def liveness():
        return {
            "status": "healthy",
            "service": "festival-reservations-api",
            "version": SERVICE_VERSION,
            "environment": config.environment,
            "payments": "stripe" if config.payments_enabled else "mock",
        }

    register_routers(app)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reservations.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
