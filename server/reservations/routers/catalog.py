"""Catalog router for experiences, products and their inventory units."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.dependencies import Catalog, CurrentUser
from ..schemas.catalog import (
    AddUnitRequest,
    ArchiveResourceRequest,
    CreateResourceRequest,
    DeleteUnitRequest,
    InventoryUnit,
    ListUnitsRequest,
    ListUnitsResponse,
    Resource,
    SetUnitOpenRequest,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/catalog", tags=["catalog"], responses=PROBLEM_RESPONSES)


@router.post("/create-resource", response_model=Resource, status_code=201)
async def create_resource(
    request: CreateResourceRequest,
    user_id: str = CurrentUser,
    service: CatalogService = Catalog,
) -> JSONResponse:
    """Create an experience or product owned by the caller."""
    resource = await service.create_resource(request, owner_id=user_id)
    return JSONResponse(status_code=201, content=Resource.from_model(resource).model_dump(mode="json"))


@router.post("/add-unit", response_model=InventoryUnit, status_code=201)
async def add_unit(
    request: AddUnitRequest,
    user_id: str = CurrentUser,
    service: CatalogService = Catalog,
) -> JSONResponse:
    """Add a time slot to an experience, or the stock unit to a product."""
    unit = await service.add_unit(request, actor=user_id)
    return JSONResponse(status_code=201, content=InventoryUnit.from_model(unit).model_dump(mode="json"))


@router.post("/set-unit-open", response_model=InventoryUnit)
async def set_unit_open(
    request: SetUnitOpenRequest,
    user_id: str = CurrentUser,
    service: CatalogService = Catalog,
) -> JSONResponse:
    """Open or close a unit for new reservations."""
    unit = await service.set_unit_open(request, actor=user_id)
    return JSONResponse(status_code=200, content=InventoryUnit.from_model(unit).model_dump(mode="json"))


@router.post("/delete-unit", status_code=204)
async def delete_unit(
    request: DeleteUnitRequest,
    user_id: str = CurrentUser,
    service: CatalogService = Catalog,
) -> None:
    """Delete a unit that was never reserved."""
    await service.delete_unit(request, actor=user_id)


@router.post("/archive-resource", response_model=Resource)
async def archive_resource(
    request: ArchiveResourceRequest,
    user_id: str = CurrentUser,
    service: CatalogService = Catalog,
) -> JSONResponse:
    """Withdraw a resource from sale."""
    resource = await service.archive_resource(request, actor=user_id)
    return JSONResponse(status_code=200, content=Resource.from_model(resource).model_dump(mode="json"))


@router.post("/list-units", response_model=ListUnitsResponse)
async def list_units(
    request: ListUnitsRequest,
    service: CatalogService = Catalog,
) -> JSONResponse:
    """List a resource's units with their remaining availability."""
    units = await service.list_units(request.resource_id)

    logger.debug(
        "Inventory units listed",
        extra={"resource_id": str(request.resource_id), "count": len(units)}
    )

    return JSONResponse(status_code=200, content={"units": units})
