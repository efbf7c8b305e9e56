"""Catalog-related Pydantic schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models.resource import ResourceKind, ResourceStatus
from .common import Money


class CreateResourceRequest(BaseModel):
    """Request schema for creating an experience or product."""

    kind: ResourceKind = Field(..., description="experience or product")
    title: str = Field(..., min_length=1, max_length=255, description="Display title")
    unit_price: Money = Field(..., description="Price per seat or item")
    status: ResourceStatus = Field(ResourceStatus.ACTIVE, description="Initial status")


class AddUnitRequest(BaseModel):
    """Request schema for adding a time slot or stock unit."""

    resource_id: UUID = Field(..., description="Resource to add capacity to")
    slot_key: Optional[str] = Field(None, min_length=1, max_length=64, description="Slot identifier, unique per resource")
    capacity: int = Field(..., ge=0, description="Seats or items available")
    starts_at: Optional[datetime] = Field(None, description="Slot start (time slots only)")
    ends_at: Optional[datetime] = Field(None, description="Slot end (time slots only)")

    @model_validator(mode="after")
    def validate_window(self) -> "AddUnitRequest":
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class SetUnitOpenRequest(BaseModel):
    """Request schema for opening or closing a unit."""

    unit_id: UUID = Field(..., description="Unit to update")
    is_open: bool = Field(..., description="Whether the unit accepts reservations")


class DeleteUnitRequest(BaseModel):
    """Request schema for deleting a unit."""

    unit_id: UUID = Field(..., description="Unit to delete")


class ArchiveResourceRequest(BaseModel):
    """Request schema for archiving a resource."""

    resource_id: UUID = Field(..., description="Resource to archive")


class ListUnitsRequest(BaseModel):
    """Request schema for listing a resource's units."""

    resource_id: UUID = Field(..., description="Resource whose units to list")


class Resource(BaseModel):
    """Resource response schema."""

    id: str = Field(..., description="Unique resource ID")
    owner_id: str = Field(..., description="Host or seller ID")
    kind: ResourceKind = Field(..., description="experience or product")
    title: str = Field(..., description="Display title")
    unit_price: Money = Field(..., description="Price per seat or item")
    status: ResourceStatus = Field(..., description="Resource status")
    version: int = Field(..., ge=1, description="Bumped on every capacity change")

    @classmethod
    def from_model(cls, resource) -> "Resource":
        return cls(
            id=str(resource.id),
            owner_id=resource.owner_id,
            kind=resource.kind,
            title=resource.title,
            unit_price=Money.from_value(resource.unit_price),
            status=resource.status,
            version=resource.version,
        )


class InventoryUnit(BaseModel):
    """Inventory unit response schema."""

    id: str = Field(..., description="Unique unit ID")
    resource_id: str = Field(..., description="Owning resource ID")
    kind: str = Field(..., description="time_slot or stock")
    slot_key: str = Field(..., description="Slot identifier")
    starts_at: Optional[datetime] = Field(None, description="Slot start")
    ends_at: Optional[datetime] = Field(None, description="Slot end")
    capacity: int = Field(..., ge=0, description="Total seats or items")
    reserved: int = Field(..., ge=0, description="Seats or items currently held")
    available: int = Field(..., ge=0, description="Seats or items still available")
    version: int = Field(..., ge=1, description="Ledger version")
    is_open: bool = Field(..., description="Whether the unit accepts reservations")

    @classmethod
    def from_model(cls, unit) -> "InventoryUnit":
        return cls(
            id=str(unit.id),
            resource_id=str(unit.resource_id),
            kind=unit.kind,
            slot_key=unit.slot_key,
            starts_at=unit.starts_at,
            ends_at=unit.ends_at,
            capacity=unit.capacity,
            reserved=unit.reserved,
            available=unit.available,
            version=unit.version,
            is_open=unit.is_open,
        )


class ListUnitsResponse(BaseModel):
    """Response schema for listing units."""

    units: List[InventoryUnit] = Field(default_factory=list, description="Units of the resource")
