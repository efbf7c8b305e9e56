"""Reservation-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..domain.status import ReservationStatus
from .common import Money


class ReservationScope(str, Enum):
    """Which side of a reservation the caller is listing from."""
    MINE = "mine"
    HOSTED = "hosted"


class CreateReservationRequest(BaseModel):
    """Request schema for creating a reservation."""

    resource_id: UUID = Field(..., description="Experience or product to reserve")
    unit_id: UUID = Field(..., description="Time slot or stock unit to draw capacity from")
    quantity: int = Field(..., ge=1, description="Number of seats or items")


class ConfirmReservationRequest(BaseModel):
    """Request schema for confirming a reservation."""

    reservation_id: UUID = Field(..., description="Reservation to confirm")


class CancelReservationRequest(BaseModel):
    """Request schema for cancelling a reservation."""

    reservation_id: UUID = Field(..., description="Reservation to cancel")
    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


class CompleteReservationRequest(BaseModel):
    """Request schema for completing a reservation."""

    reservation_id: UUID = Field(..., description="Reservation to mark as completed")


class ShipOrderRequest(BaseModel):
    """Request schema for marking a confirmed order as shipped."""

    reservation_id: UUID = Field(..., description="Order to mark as shipped")
    tracking_number: Optional[str] = Field(None, min_length=1, max_length=255, description="Carrier tracking number")


class GetReservationRequest(BaseModel):
    """Request schema for getting a reservation."""

    reservation_id: UUID = Field(..., description="Reservation to retrieve")


class ListReservationsRequest(BaseModel):
    """Request schema for listing reservations."""

    scope: ReservationScope = Field(ReservationScope.MINE, description="Own reservations or those on owned resources")
    status: Optional[ReservationStatus] = Field(None, description="Only return reservations in this status")


class Reservation(BaseModel):
    """Reservation response schema."""

    id: str = Field(..., description="Unique reservation ID")
    user_id: str = Field(..., description="User holding the reservation")
    resource_id: str = Field(..., description="Reserved resource ID")
    unit_id: str = Field(..., description="Inventory unit ID")
    kind: str = Field(..., description="booking or order")
    quantity: int = Field(..., ge=1, description="Number of seats or items")
    total: Money = Field(..., description="Total price")
    status: ReservationStatus = Field(..., description="Reservation status")
    payment_reference: Optional[str] = Field(None, description="Payment provider reference")
    failure_reason: Optional[str] = Field(None, description="Why payment failed")
    cancellation_reason: Optional[str] = Field(None, description="Why the reservation was cancelled")
    cancelled_by: Optional[str] = Field(None, description="customer, owner or system")
    created_at: datetime = Field(..., description="Creation time (ISO 8601)")
    pending_at: Optional[datetime] = Field(None, description="Payment intent creation time")
    confirmed_at: Optional[datetime] = Field(None, description="Confirmation time")
    cancelled_at: Optional[datetime] = Field(None, description="Cancellation time")
    completed_at: Optional[datetime] = Field(None, description="Completion time")
    payment_failed_at: Optional[datetime] = Field(None, description="Payment failure time")
    inventory_released_at: Optional[datetime] = Field(None, description="When the held quantity was released")
    refunded_at: Optional[datetime] = Field(None, description="When the payment was refunded")
    shipped_at: Optional[datetime] = Field(None, description="When the order was handed to the carrier")
    tracking_number: Optional[str] = Field(None, description="Carrier tracking number")

    @classmethod
    def from_model(cls, reservation) -> "Reservation":
        return cls(
            id=str(reservation.id),
            user_id=reservation.user_id,
            resource_id=str(reservation.resource_id),
            unit_id=str(reservation.unit_id),
            kind=reservation.kind,
            quantity=reservation.quantity,
            total=Money.from_value(reservation.total),
            status=reservation.status,
            payment_reference=reservation.payment_reference,
            failure_reason=reservation.failure_reason,
            cancellation_reason=reservation.cancellation_reason,
            cancelled_by=reservation.cancelled_by,
            created_at=reservation.created_at,
            pending_at=reservation.pending_at,
            confirmed_at=reservation.confirmed_at,
            cancelled_at=reservation.cancelled_at,
            completed_at=reservation.completed_at,
            payment_failed_at=reservation.payment_failed_at,
            inventory_released_at=reservation.inventory_released_at,
            refunded_at=reservation.refunded_at,
            shipped_at=reservation.shipped_at,
            tracking_number=reservation.tracking_number,
        )


class CreateReservationResponse(BaseModel):
    """Response schema for a newly created reservation."""

    reservation: Reservation = Field(..., description="The created reservation")
    client_secret: Optional[str] = Field(None, description="Secret for completing payment client-side")


class ListReservationsResponse(BaseModel):
    """Response schema for listing reservations."""

    reservations: List[Reservation] = Field(default_factory=list, description="Matching reservations")
