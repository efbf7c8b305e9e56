#!/usr/bin/env python3
"""Setup script for the festival reservations API."""

import asyncio
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from reservations.core.database import async_session_factory, close_db
from reservations.models import Resource
from reservations.models.resource import ResourceKind
from reservations.schemas.catalog import AddUnitRequest, CreateResourceRequest
from reservations.schemas.common import Money
from reservations.services.catalog_service import CatalogService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_HOST = "host-demo"
DEMO_SELLER = "seller-demo"


def run_migrations() -> None:
    """Apply Alembic migrations up to head."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create one experience with two time slots and one stocked product."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing = await db.execute(select(func.count(Resource.id)))
        if existing.scalar() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        catalog = CatalogService(db)

        experience = await catalog.create_resource(
            CreateResourceRequest(
                kind=ResourceKind.EXPERIENCE,
                title="Sunrise Cacao Ceremony",
                unit_price=Money(amount=45000, currency="MXN"),
            ),
            owner_id=DEMO_HOST,
        )
        first_slot = (datetime.utcnow() + timedelta(days=14)).replace(hour=6, minute=0, second=0, microsecond=0)
        for offset in (0, 1):
            starts_at = first_slot + timedelta(days=offset)
            await catalog.add_unit(
                AddUnitRequest(
                    resource_id=experience.id,
                    capacity=12,
                    starts_at=starts_at,
                    ends_at=starts_at + timedelta(hours=2),
                ),
                actor=DEMO_HOST,
            )

        product = await catalog.create_resource(
            CreateResourceRequest(
                kind=ResourceKind.PRODUCT,
                title="Festival Tote Bag",
                unit_price=Money(amount=35000, currency="MXN"),
            ),
            owner_id=DEMO_SELLER,
        )
        await catalog.add_unit(AddUnitRequest(resource_id=product.id, capacity=50), actor=DEMO_SELLER)

        logger.info(
            "Sample data created successfully",
            extra={"experience_id": str(experience.id), "product_id": str(product.id)}
        )


async def main() -> None:
    """Main setup function."""
    logger.info("Starting festival reservations setup...")

    # The migration environment runs its own event loop
    await asyncio.to_thread(run_migrations)

    try:
        await create_sample_data()
    finally:
        await close_db()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn reservations.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
