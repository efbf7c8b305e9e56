"""Reservation router for booking and order lifecycle operations."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.dependencies import CurrentUser, Reservations
from ..schemas.common import PROBLEM_RESPONSES, Problem
from ..schemas.reservation import (
    CancelReservationRequest,
    CompleteReservationRequest,
    ConfirmReservationRequest,
    CreateReservationRequest,
    CreateReservationResponse,
    GetReservationRequest,
    ListReservationsRequest,
    ListReservationsResponse,
    Reservation,
    ReservationScope,
    ShipOrderRequest,
)
from ..services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/reservation",
    tags=["reservation"],
    responses={
        **PROBLEM_RESPONSES,
        402: {"model": Problem, "description": "Payment has not settled yet"},
        502: {"model": Problem, "description": "Payment provider failure"},
    },
)


@router.post("/create", response_model=CreateReservationResponse, status_code=201)
async def create_reservation(
    request: CreateReservationRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """
    Hold inventory and open a payment intent.

    The response carries the client secret needed to complete payment.
    """
    result = await service.create(user_id, request.resource_id, request.unit_id, request.quantity)

    response_data = CreateReservationResponse(
        reservation=Reservation.from_model(result.reservation),
        client_secret=result.client_secret,
    )
    return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))


@router.post("/confirm", response_model=Reservation)
async def confirm_reservation(
    request: ConfirmReservationRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """Confirm a reservation whose payment has settled."""
    reservation = await service.confirm(request.reservation_id, user_id)
    return JSONResponse(status_code=200, content=Reservation.from_model(reservation).model_dump(mode="json"))


@router.post("/cancel", response_model=Reservation)
async def cancel_reservation(
    request: CancelReservationRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """Cancel a reservation as its holder or as the resource owner; paid reservations are refunded."""
    reservation = await service.cancel(request.reservation_id, user_id, reason=request.reason)
    return JSONResponse(status_code=200, content=Reservation.from_model(reservation).model_dump(mode="json"))


@router.post("/ship", response_model=Reservation)
async def ship_order(
    request: ShipOrderRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """Record that a paid order was handed to the carrier."""
    reservation = await service.ship(request.reservation_id, user_id, request.tracking_number)
    return JSONResponse(status_code=200, content=Reservation.from_model(reservation).model_dump(mode="json"))


@router.post("/complete", response_model=Reservation)
async def complete_reservation(
    request: CompleteReservationRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """Mark a confirmed reservation as delivered or attended."""
    reservation = await service.complete(request.reservation_id, user_id)
    return JSONResponse(status_code=200, content=Reservation.from_model(reservation).model_dump(mode="json"))


@router.post("/get", response_model=Reservation)
async def get_reservation(
    request: GetReservationRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """Get a reservation visible to the caller."""
    reservation = await service.get_reservation(request.reservation_id, user_id)
    return JSONResponse(status_code=200, content=Reservation.from_model(reservation).model_dump(mode="json"))


@router.post("/list", response_model=ListReservationsResponse)
async def list_reservations(
    request: ListReservationsRequest,
    user_id: str = CurrentUser,
    service: ReservationService = Reservations,
) -> JSONResponse:
    """List the caller's reservations, or those on resources the caller owns."""
    if request.scope is ReservationScope.HOSTED:
        rows = await service.list_owner_reservations(user_id, status=request.status)
    else:
        rows = await service.list_user_reservations(user_id, status=request.status)

    logger.debug(
        "Reservations listed",
        extra={"user_id": user_id, "scope": request.scope.value, "count": len(rows)}
    )

    return JSONResponse(status_code=200, content={"reservations": rows})
