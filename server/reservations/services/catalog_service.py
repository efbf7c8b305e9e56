"""Catalog service for experiences, products and their inventory units."""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import CacheBackend, CacheInvalidator, read_through, resource_units_key
from ..core.config import settings
from ..core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..models.inventory import STOCK_SLOT_KEY, InventoryUnit, UnitKind
from ..models.reservation import Reservation
from ..models.resource import Resource, ResourceKind, ResourceStatus
from ..schemas.catalog import (
    AddUnitRequest,
    ArchiveResourceRequest,
    CreateResourceRequest,
    DeleteUnitRequest,
    InventoryUnit as InventoryUnitView,
    SetUnitOpenRequest,
)

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for host-side catalog operations."""

    def __init__(self, db: AsyncSession, cache: Optional[CacheBackend] = None):
        self.db = db
        self.cache = cache
        self.invalidator = CacheInvalidator(cache)

    async def create_resource(self, request: CreateResourceRequest, owner_id: str) -> Resource:
        """
        Create a new experience or product.

        Args:
            request: Resource creation request
            owner_id: Host or seller creating it

        Returns:
            Created resource entity
        """
        resource = Resource(
            owner_id=owner_id,
            kind=request.kind.value,
            title=request.title,
            unit_price_amount=request.unit_price.amount,
            unit_price_currency=request.unit_price.currency,
            status=request.status.value,
        )

        self.db.add(resource)
        await self.db.commit()

        logger.info(
            "Resource created successfully",
            extra={
                "resource_id": str(resource.id),
                "owner_id": owner_id,
                "kind": resource.kind,
                "title": resource.title,
            }
        )

        return resource

    async def add_unit(self, request: AddUnitRequest, actor: str) -> InventoryUnit:
        """
        Add a time slot to an experience or the stock unit to a product.

        Raises:
            NotFoundError: If resource not found
            AuthorizationError: If actor does not own the resource
            ValidationError: If the unit does not fit the resource kind
            ConflictError: If the slot key is already taken
        """
        resource = await self.get_resource_or_raise(request.resource_id)
        self._ensure_owner(resource, actor)

        if resource.kind == ResourceKind.PRODUCT.value:
            if request.starts_at or request.ends_at:
                raise ValidationError("Product stock units have no time window")
            kind = UnitKind.STOCK
            slot_key = STOCK_SLOT_KEY
        else:
            if not request.starts_at:
                raise ValidationError("Time slots need a start time")
            kind = UnitKind.TIME_SLOT
            slot_key = request.slot_key or request.starts_at.isoformat()

        unit = InventoryUnit(
            resource_id=resource.id,
            kind=kind.value,
            slot_key=slot_key,
            starts_at=request.starts_at,
            ends_at=request.ends_at,
            capacity=request.capacity,
        )
        self.db.add(unit)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                detail=f"Resource {request.resource_id} already has a unit '{slot_key}'",
                conflicting_resource={"resource_id": str(request.resource_id), "slot_key": slot_key},
            )

        logger.info(
            "Inventory unit added",
            extra={
                "unit_id": str(unit.id),
                "resource_id": str(resource.id),
                "slot_key": slot_key,
                "capacity": unit.capacity,
                "actor": actor,
            }
        )

        await self.invalidator.invalidate_resource(resource.id)
        return unit

    async def set_unit_open(self, request: SetUnitOpenRequest, actor: str) -> InventoryUnit:
        """Open or close a unit for new reservations; existing holds are untouched."""
        unit, resource = await self._get_unit_with_resource(request.unit_id)
        self._ensure_owner(resource, actor)

        unit.is_open = request.is_open
        await self.db.commit()

        logger.info(
            "Inventory unit availability changed",
            extra={"unit_id": str(unit.id), "is_open": unit.is_open, "actor": actor}
        )

        await self.invalidator.invalidate_resource(resource.id)
        return unit

    async def delete_unit(self, request: DeleteUnitRequest, actor: str) -> None:
        """
        Delete a unit nobody has reserved.

        Raises:
            ValidationError: If the unit holds inventory or has reservation history
        """
        unit, resource = await self._get_unit_with_resource(request.unit_id)
        self._ensure_owner(resource, actor)

        if unit.reserved > 0:
            raise ValidationError(
                f"Unit '{unit.slot_key}' has {unit.reserved} reserved; close it instead",
                errors={"reserved": unit.reserved},
            )

        history = await self.db.execute(
            select(func.count(Reservation.id)).where(Reservation.unit_id == unit.id)
        )
        if history.scalar():
            raise ValidationError(f"Unit '{unit.slot_key}' has reservation history; close it instead")

        await self.db.delete(unit)
        await self.db.commit()

        logger.info(
            "Inventory unit deleted",
            extra={"unit_id": str(request.unit_id), "resource_id": str(resource.id), "actor": actor}
        )

        await self.invalidator.invalidate_resource(resource.id)

    async def archive_resource(self, request: ArchiveResourceRequest, actor: str) -> Resource:
        """Withdraw a resource from sale; existing reservations keep their course."""
        resource = await self.get_resource_or_raise(request.resource_id)
        self._ensure_owner(resource, actor)

        if resource.status != ResourceStatus.ARCHIVED.value:
            resource.status = ResourceStatus.ARCHIVED.value
            await self.db.commit()
            logger.info(
                "Resource archived",
                extra={"resource_id": str(resource.id), "actor": actor}
            )

        await self.invalidator.invalidate_resource(resource.id, owner_id=resource.owner_id)
        return resource

    async def list_units(self, resource_id: UUID) -> List[Dict[str, Any]]:
        """List a resource's units ordered by start time, through the read cache."""
        await self.get_resource_or_raise(resource_id)

        async def load() -> List[Dict[str, Any]]:
            stmt = (
                select(InventoryUnit)
                .where(InventoryUnit.resource_id == resource_id)
                .order_by(InventoryUnit.starts_at, InventoryUnit.slot_key)
            )
            result = await self.db.execute(stmt)
            return [InventoryUnitView.from_model(unit).model_dump(mode="json") for unit in result.scalars()]

        return await read_through(self.cache, resource_units_key(resource_id), settings.cache_ttl_seconds, load)

    async def get_resource_by_id(self, resource_id: UUID) -> Optional[Resource]:
        """Get resource by ID."""
        stmt = select(Resource).where(Resource.id == resource_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_resource_or_raise(self, resource_id: UUID) -> Resource:
        """
        Get resource by ID or raise NotFoundError.

        Raises:
            NotFoundError: If resource not found
        """
        resource = await self.get_resource_by_id(resource_id)
        if not resource:
            raise NotFoundError(resource_type="resource", resource_id=str(resource_id))
        return resource

    async def _get_unit_with_resource(self, unit_id: UUID) -> tuple[InventoryUnit, Resource]:
        stmt = (
            select(InventoryUnit, Resource)
            .join(Resource, Resource.id == InventoryUnit.resource_id)
            .where(InventoryUnit.id == unit_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        row = result.first()
        if not row:
            raise NotFoundError(resource_type="inventory unit", resource_id=str(unit_id))
        return row[0], row[1]

    @staticmethod
    def _ensure_owner(resource: Resource, actor: str) -> None:
        if not resource.is_owned_by(actor):
            raise AuthorizationError(f"Only the owner of resource {resource.id} can change it")
