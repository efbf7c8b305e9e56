"""Unit tests for the reservation service."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from reservations.core.cache import owner_reservations_key, resource_units_key, user_reservations_key
from reservations.core.events import EventType
from reservations.core.exceptions import (
    AlreadyProcessedError,
    AuthorizationError,
    CapacityExceededError,
    ConcurrencyConflictError,
    DuplicateReservationError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    PaymentIncompleteError,
    RefundFailedError,
    UnavailableError,
    ValidationError,
)
from reservations.domain.status import ReservationStatus
from reservations.models.reservation import Reservation
from reservations.schemas.catalog import ArchiveResourceRequest, SetUnitOpenRequest
from reservations.services.payment_gateway import MockPaymentGateway, SettlementStatus
from reservations.services.reservation_service import ReservationService

GUEST = "guest-1"
OTHER_GUEST = "guest-2"
HOST = "host-1"
SELLER = "seller-1"

LATER = timedelta(hours=2)


async def reserved_on(service, unit_id):
    unit = await service.ledger.get(unit_id)
    await service.db.commit()
    return unit.reserved


async def reservations_of(session, user_id):
    result = await session.execute(
        select(Reservation).where(Reservation.user_id == user_id).execution_options(populate_existing=True)
    )
    rows = list(result.scalars())
    await session.commit()
    return rows


# Creation

@pytest.mark.asyncio
async def test_create_booking_holds_inventory_and_opens_intent(service, gateway, events, experience):
    resource, unit = experience

    result = await service.create(GUEST, resource.id, unit.id, 2)
    reservation = result.reservation

    assert reservation.current_status is ReservationStatus.PENDING
    assert reservation.kind == "booking"
    assert reservation.total_amount == 50000
    assert reservation.total_currency == "MXN"
    assert reservation.payment_reference == "pi_test_1"
    assert reservation.pending_at is not None
    assert result.client_secret == "pi_test_1_secret"

    assert gateway.created[0]["amount"] == 50000
    assert gateway.created[0]["metadata"]["reservation_id"] == str(reservation.id)

    unit = await service.ledger.get(unit.id)
    assert unit.reserved == 2
    assert unit.version == 2
    assert events.types == [EventType.BOOKING_CREATED]


@pytest.mark.asyncio
async def test_create_order_for_product(service, events, product):
    resource, unit = product

    result = await service.create(GUEST, resource.id, unit.id, 2)

    assert result.reservation.kind == "order"
    assert result.reservation.total_amount == 70000
    assert events.types == [EventType.ORDER_CREATED]
    payload = events.events[0][1]
    assert payload["owner_id"] == SELLER
    assert payload["slot_key"] == "stock"


@pytest.mark.asyncio
async def test_create_invalidates_cached_listings(service, cache, experience):
    resource, unit = experience
    await service.list_user_reservations(GUEST)
    await service.list_owner_reservations(HOST)
    assert user_reservations_key(GUEST) in cache
    assert owner_reservations_key(HOST) in cache

    await service.create(GUEST, resource.id, unit.id, 1)

    assert user_reservations_key(GUEST) not in cache
    assert owner_reservations_key(HOST) not in cache
    assert resource_units_key(resource.id) not in cache


@pytest.mark.asyncio
async def test_create_beyond_availability_fails(service, make_experience):
    resource, unit = await make_experience(capacity=5)
    await service.create(GUEST, resource.id, unit.id, 4)

    with pytest.raises(CapacityExceededError) as exc_info:
        await service.create(OTHER_GUEST, resource.id, unit.id, 2)

    assert exc_info.value.available_quantity == 1
    assert await reserved_on(service, unit.id) == 4
    assert await reservations_of(service.db, OTHER_GUEST) == []


@pytest.mark.asyncio
async def test_create_beyond_capacity_is_capacity_exceeded(service, make_experience):
    resource, unit = await make_experience(capacity=3)

    with pytest.raises(CapacityExceededError) as exc_info:
        await service.create(GUEST, resource.id, unit.id, 4)

    assert exc_info.value.code == "CAPACITY_EXCEEDED"
    assert exc_info.value.available_quantity == 3
    assert await reserved_on(service, unit.id) == 0


@pytest.mark.asyncio
async def test_create_rejects_duplicate_active_reservation(service, experience):
    resource, unit = experience
    await service.create(GUEST, resource.id, unit.id, 1)

    with pytest.raises(DuplicateReservationError):
        await service.create(GUEST, resource.id, unit.id, 1)

    assert await reserved_on(service, unit.id) == 1


@pytest.mark.asyncio
async def test_create_allowed_again_after_cancel(service, experience):
    resource, unit = experience
    first = await service.create(GUEST, resource.id, unit.id, 1)
    await service.cancel(first.reservation.id, GUEST)

    second = await service.create(GUEST, resource.id, unit.id, 1)

    assert second.reservation.id != first.reservation.id
    assert await reserved_on(service, unit.id) == 1


@pytest.mark.asyncio
async def test_create_on_closed_unit_is_unavailable(service, catalog, experience):
    resource, unit = experience
    await catalog.set_unit_open(SetUnitOpenRequest(unit_id=unit.id, is_open=False), actor=HOST)

    with pytest.raises(UnavailableError):
        await service.create(GUEST, resource.id, unit.id, 1)


@pytest.mark.asyncio
async def test_create_on_archived_resource_is_unavailable(service, catalog, experience):
    resource, unit = experience
    await catalog.archive_resource(ArchiveResourceRequest(resource_id=resource.id), actor=HOST)

    with pytest.raises(UnavailableError):
        await service.create(GUEST, resource.id, unit.id, 1)


@pytest.mark.asyncio
async def test_create_on_sold_out_product_is_unavailable(service, make_product):
    resource, unit = await make_product(stock=1)
    await service.create(GUEST, resource.id, unit.id, 1)

    with pytest.raises(UnavailableError):
        await service.create(OTHER_GUEST, resource.id, unit.id, 1)


@pytest.mark.asyncio
async def test_create_with_unit_of_another_resource(service, experience, product):
    resource, _ = experience
    _, stock_unit = product

    with pytest.raises(ValidationError):
        await service.create(GUEST, resource.id, stock_unit.id, 1)


@pytest.mark.asyncio
async def test_create_with_unknown_unit(service, experience):
    resource, _ = experience

    with pytest.raises(NotFoundError):
        await service.create(GUEST, resource.id, uuid4(), 1)


@pytest.mark.asyncio
async def test_gateway_failure_leaves_payment_failed_with_inventory_held(service, gateway, experience):
    """A failed intent does not roll the hold back; reconciliation releases it later."""
    resource, unit = experience
    gateway.create_error = PaymentGatewayError(operation="create_intent", provider_message="card network down")

    with pytest.raises(PaymentGatewayError):
        await service.create(GUEST, resource.id, unit.id, 2)

    [reservation] = await reservations_of(service.db, GUEST)
    assert reservation.current_status is ReservationStatus.PAYMENT_FAILED
    assert reservation.failure_reason == "The payment provider could not process the request"
    assert reservation.holds_inventory
    assert await reserved_on(service, unit.id) == 2

    report = await service.release_stale_holds()

    assert report.released_failed == 1
    assert await reserved_on(service, unit.id) == 0
    [reservation] = await reservations_of(service.db, GUEST)
    assert reservation.current_status is ReservationStatus.PAYMENT_FAILED
    assert reservation.inventory_released_at is not None


@pytest.mark.asyncio
async def test_conflict_is_retried_from_a_fresh_read(service, monkeypatch, experience):
    resource, unit = experience
    original = service.ledger.try_reserve
    calls = []

    async def racing_try_reserve(unit_id, expected_version, delta, **kwargs):
        calls.append(expected_version)
        if len(calls) == 1:
            raise ConcurrencyConflictError(str(unit_id), expected_version)
        return await original(unit_id, expected_version, delta, **kwargs)

    monkeypatch.setattr(service.ledger, "try_reserve", racing_try_reserve)

    result = await service.create(GUEST, resource.id, unit.id, 1)

    assert result.reservation.current_status is ReservationStatus.PENDING
    assert len(calls) == 2
    assert await reserved_on(service, unit.id) == 1


@pytest.mark.asyncio
async def test_conflict_retry_budget_exhausted(service, monkeypatch, experience):
    resource, unit = experience
    calls = []

    async def always_conflicting(unit_id, expected_version, delta, **kwargs):
        calls.append(expected_version)
        raise ConcurrencyConflictError(str(unit_id), expected_version)

    monkeypatch.setattr(service.ledger, "try_reserve", always_conflicting)

    with pytest.raises(ConcurrencyConflictError):
        await service.create(GUEST, resource.id, unit.id, 1)

    assert len(calls) == service.retry_policy.attempts
    assert await reservations_of(service.db, GUEST) == []
    assert await reserved_on(service, unit.id) == 0


@pytest.mark.asyncio
async def test_event_failure_does_not_fail_the_operation(test_session, gateway, retry_policy, experience):
    class BrokenBus:
        def emit(self, event_type, payload):
            raise RuntimeError("notification backend down")

    resource, unit = experience
    service = ReservationService(test_session, gateway, events=BrokenBus(), retry_policy=retry_policy)

    result = await service.create(GUEST, resource.id, unit.id, 1)

    assert result.reservation.current_status is ReservationStatus.PENDING


# Confirmation

@pytest.mark.asyncio
async def test_mock_gateway_create_then_confirm(test_session, retry_policy, make_experience):
    """In mock mode the intent is created and settles immediately."""
    resource, unit = await make_experience(price=250)
    service = ReservationService(test_session, MockPaymentGateway(), retry_policy=retry_policy)

    result = await service.create(GUEST, resource.id, unit.id, 2)

    assert result.reservation.total_amount == 500
    assert result.reservation.current_status is ReservationStatus.PENDING
    assert result.reservation.payment_reference.startswith("mock_pi_")
    assert result.client_secret.endswith("_secret_mock")

    confirmed = await service.confirm(result.reservation.id, GUEST)

    assert confirmed.current_status is ReservationStatus.CONFIRMED
    assert confirmed.confirmed_at is not None


@pytest.mark.asyncio
async def test_confirm_requires_settled_payment(service, gateway, events, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    with pytest.raises(PaymentIncompleteError) as exc_info:
        await service.confirm(result.reservation.id, GUEST)
    assert exc_info.value.retryable is True

    gateway.settle(result.reservation.payment_reference)
    confirmed = await service.confirm(result.reservation.id, GUEST)

    assert confirmed.current_status is ReservationStatus.CONFIRMED
    assert events.types == [EventType.BOOKING_CREATED, EventType.BOOKING_CONFIRMED]


@pytest.mark.asyncio
async def test_confirm_failed_payment_is_incomplete(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference, SettlementStatus.FAILED)

    with pytest.raises(PaymentIncompleteError):
        await service.confirm(result.reservation.id, GUEST)


@pytest.mark.asyncio
async def test_confirm_by_someone_else_is_forbidden(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)

    with pytest.raises(AuthorizationError):
        await service.confirm(result.reservation.id, OTHER_GUEST)


@pytest.mark.asyncio
async def test_confirm_completed_reservation_is_already_processed(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)
    reservation_id = result.reservation.id
    await service.complete(result.reservation.id, HOST)

    with pytest.raises(AlreadyProcessedError):
        await service.confirm(result.reservation.id, GUEST)

    reservation = await service.get_reservation(reservation_id, GUEST)
    assert reservation.current_status is ReservationStatus.COMPLETED


@pytest.mark.asyncio
async def test_confirm_unknown_reservation(service):
    with pytest.raises(NotFoundError):
        await service.confirm(uuid4(), GUEST)


# Cancellation

@pytest.mark.asyncio
async def test_cancel_confirmed_refunds_then_releases(service, gateway, events, make_product):
    resource, unit = await make_product(stock=5)
    result = await service.create(GUEST, resource.id, unit.id, 3)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    cancelled = await service.cancel(result.reservation.id, GUEST, reason="plans changed")

    assert cancelled.current_status is ReservationStatus.CANCELLED
    assert cancelled.cancelled_by == "customer"
    assert cancelled.cancellation_reason == "plans changed"
    assert cancelled.inventory_released_at is not None
    assert gateway.refunded == [result.reservation.payment_reference]
    assert await reserved_on(service, unit.id) == 0
    assert events.types == [
        EventType.ORDER_CREATED,
        EventType.ORDER_PAID,
        EventType.ORDER_CANCELLED,
        EventType.ORDER_REFUNDED,
    ]


@pytest.mark.asyncio
async def test_cancel_unpaid_cancels_intent_without_refund(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 2)

    cancelled = await service.cancel(result.reservation.id, GUEST)

    assert cancelled.current_status is ReservationStatus.CANCELLED
    assert gateway.refunded == []
    assert gateway.cancelled == [result.reservation.payment_reference]
    assert await reserved_on(service, unit.id) == 0


@pytest.mark.asyncio
async def test_cancel_survives_intent_cancel_failure(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 2)
    gateway.cancel_result = PaymentGatewayError(operation="cancel", provider_message="timeout")

    cancelled = await service.cancel(result.reservation.id, GUEST)

    assert cancelled.current_status is ReservationStatus.CANCELLED
    assert await reserved_on(service, unit.id) == 0


@pytest.mark.asyncio
async def test_owner_can_cancel(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    cancelled = await service.cancel(result.reservation.id, HOST, reason="rained out")

    assert cancelled.cancelled_by == "owner"


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    with pytest.raises(AuthorizationError):
        await service.cancel(result.reservation.id, OTHER_GUEST)

    assert await reserved_on(service, unit.id) == 1


@pytest.mark.asyncio
async def test_cancel_twice_is_already_processed(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    await service.cancel(result.reservation.id, GUEST)

    with pytest.raises(AlreadyProcessedError):
        await service.cancel(result.reservation.id, GUEST)

    assert await reserved_on(service, unit.id) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("refund_result", [
    False,
    PaymentGatewayError(operation="refund", provider_message="timeout"),
])
async def test_refund_failure_aborts_cancellation(service, gateway, experience, refund_result):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 2)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)
    gateway.refund_result = refund_result
    reservation_id = result.reservation.id

    with pytest.raises(RefundFailedError) as exc_info:
        await service.cancel(result.reservation.id, GUEST)

    assert exc_info.value.code == "REFUND_FAILED"
    reservation = await service.get_reservation(reservation_id, GUEST)
    assert reservation.current_status is ReservationStatus.CONFIRMED
    assert await reserved_on(service, unit.id) == 2


@pytest.mark.asyncio
async def test_cancel_retried_after_release_conflict_does_not_refund_again(
    service, gateway, events, monkeypatch, experience
):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 2)
    reservation_id = result.reservation.id
    payment_reference = result.reservation.payment_reference
    gateway.settle(payment_reference)
    await service.confirm(reservation_id, GUEST)

    async def always_conflicting(unit_id, expected_version, delta, **kwargs):
        raise ConcurrencyConflictError(str(unit_id), expected_version)

    monkeypatch.setattr(service.ledger, "try_reserve", always_conflicting)
    with pytest.raises(ConcurrencyConflictError):
        await service.cancel(reservation_id, GUEST)

    reservation = await service.get_reservation(reservation_id, GUEST)
    assert reservation.current_status is ReservationStatus.CONFIRMED
    assert reservation.refunded_at is not None
    assert await reserved_on(service, unit.id) == 2

    monkeypatch.undo()
    # The provider refuses to refund the same charge twice
    gateway.refund_result = False

    cancelled = await service.cancel(reservation_id, GUEST)

    assert cancelled.current_status is ReservationStatus.CANCELLED
    assert cancelled.inventory_released_at is not None
    assert gateway.refunded == [payment_reference]
    assert await reserved_on(service, unit.id) == 0
    assert events.types.count(EventType.BOOKING_CANCELLED) == 1


@pytest.mark.asyncio
async def test_refund_retry_reuses_idempotency_key(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    reservation_id = result.reservation.id
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(reservation_id, GUEST)

    gateway.refund_result = PaymentGatewayError(operation="refund", provider_message="timeout")
    with pytest.raises(RefundFailedError):
        await service.cancel(reservation_id, GUEST)

    gateway.refund_result = True
    cancelled = await service.cancel(reservation_id, GUEST)

    assert cancelled.current_status is ReservationStatus.CANCELLED
    assert cancelled.refunded_at is not None
    assert gateway.refund_keys == [f"refund:{reservation_id}", f"refund:{reservation_id}"]
    assert await reserved_on(service, unit.id) == 0


# Completion

@pytest.mark.asyncio
async def test_complete_keeps_capacity_consumed(service, gateway, events, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 2)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    completed = await service.complete(result.reservation.id, HOST)

    assert completed.current_status is ReservationStatus.COMPLETED
    assert completed.completed_at is not None
    assert await reserved_on(service, unit.id) == 2
    assert events.types[-1] is EventType.BOOKING_COMPLETED


@pytest.mark.asyncio
async def test_complete_requires_owner(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    with pytest.raises(AuthorizationError):
        await service.complete(result.reservation.id, GUEST)


@pytest.mark.asyncio
async def test_complete_unconfirmed_is_invalid(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    with pytest.raises(InvalidTransitionError):
        await service.complete(result.reservation.id, HOST)


# Shipping

@pytest.mark.asyncio
async def test_ship_confirmed_order_records_tracking(service, gateway, events, product):
    resource, unit = product
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    shipped = await service.ship(result.reservation.id, SELLER, tracking_number="1Z999AA1")

    assert shipped.current_status is ReservationStatus.CONFIRMED
    assert shipped.shipped_at is not None
    assert shipped.tracking_number == "1Z999AA1"
    event_type, payload = events.events[-1]
    assert event_type is EventType.ORDER_SHIPPED
    assert payload["tracking_number"] == "1Z999AA1"
    assert payload["user_id"] == GUEST

    delivered = await service.complete(result.reservation.id, SELLER)
    assert delivered.current_status is ReservationStatus.COMPLETED
    assert events.types[-1] is EventType.ORDER_DELIVERED


@pytest.mark.asyncio
async def test_ship_twice_is_already_processed(service, gateway, events, product):
    resource, unit = product
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)
    await service.ship(result.reservation.id, SELLER)

    with pytest.raises(AlreadyProcessedError):
        await service.ship(result.reservation.id, SELLER)
    assert events.types.count(EventType.ORDER_SHIPPED) == 1


@pytest.mark.asyncio
async def test_ship_unpaid_order_is_invalid(service, product):
    resource, unit = product
    result = await service.create(GUEST, resource.id, unit.id, 1)

    with pytest.raises(InvalidTransitionError):
        await service.ship(result.reservation.id, SELLER)


@pytest.mark.asyncio
async def test_ship_requires_owner(service, gateway, product):
    resource, unit = product
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    with pytest.raises(AuthorizationError):
        await service.ship(result.reservation.id, GUEST)


@pytest.mark.asyncio
async def test_ship_booking_is_invalid(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    with pytest.raises(ValidationError):
        await service.ship(result.reservation.id, HOST)


# Provider-driven transitions

@pytest.mark.asyncio
async def test_mark_payment_succeeded_is_idempotent(service, events, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    first = await service.mark_payment_succeeded(result.reservation.id)
    second = await service.mark_payment_succeeded(result.reservation.id)

    assert first.current_status is ReservationStatus.CONFIRMED
    assert second.current_status is ReservationStatus.CONFIRMED
    assert events.types.count(EventType.BOOKING_CONFIRMED) == 1


@pytest.mark.asyncio
async def test_mark_payment_succeeded_after_cancel_is_already_processed(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    await service.cancel(result.reservation.id, GUEST)

    with pytest.raises(AlreadyProcessedError):
        await service.mark_payment_succeeded(result.reservation.id)


@pytest.mark.asyncio
async def test_mark_payment_failed_keeps_hold_for_reconciliation(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 3)

    failed = await service.mark_payment_failed(result.reservation.id, "card declined")
    again = await service.mark_payment_failed(result.reservation.id, "card declined")

    assert failed.current_status is ReservationStatus.PAYMENT_FAILED
    assert failed.failure_reason == "card declined"
    assert again.payment_failed_at == failed.payment_failed_at
    assert await reserved_on(service, unit.id) == 3

    report = await service.release_stale_holds()

    assert report.released_failed == 1
    assert await reserved_on(service, unit.id) == 0


# Reconciliation

@pytest.mark.asyncio
async def test_sweep_expires_abandoned_pending_payment(service, gateway, events, experience):
    """A hold whose intent was never created is released once the TTL passes."""
    resource, unit = experience
    gateway.create_error = RuntimeError("process died before the intent was created")

    with pytest.raises(RuntimeError):
        await service.create(GUEST, resource.id, unit.id, 2)

    assert (await service.release_stale_holds()).released == 0
    assert await reserved_on(service, unit.id) == 2

    report = await service.release_stale_holds(now=datetime.utcnow() + LATER)

    assert report.expired == 1
    [reservation] = await reservations_of(service.db, GUEST)
    assert reservation.current_status is ReservationStatus.CANCELLED
    assert reservation.cancelled_by == "system"
    assert reservation.cancellation_reason == "expired"
    assert await reserved_on(service, unit.id) == 0
    assert EventType.BOOKING_CANCELLED in events.types


@pytest.mark.asyncio
async def test_sweep_confirms_settled_pending(service, gateway, experience):
    """A payment that settled without a webhook is confirmed rather than expired."""
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)
    gateway.settle(result.reservation.payment_reference)

    report = await service.release_stale_holds(now=datetime.utcnow() + LATER)

    assert report.confirmed == 1
    assert report.released == 0
    reservation = await service.get_reservation(result.reservation.id, GUEST)
    assert reservation.current_status is ReservationStatus.CONFIRMED
    assert await reserved_on(service, unit.id) == 1


@pytest.mark.asyncio
async def test_sweep_expires_unsettled_pending(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    report = await service.release_stale_holds(now=datetime.utcnow() + LATER)

    assert report.expired == 1
    assert gateway.cancelled == [result.reservation.payment_reference]
    assert await reserved_on(service, unit.id) == 0

    again = await service.release_stale_holds(now=datetime.utcnow() + LATER)
    assert again.released == 0
    assert again.confirmed == 0


@pytest.mark.asyncio
async def test_sweep_leaves_confirmed_reservations_alone(service, gateway, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 2)
    gateway.settle(result.reservation.payment_reference)
    await service.confirm(result.reservation.id, GUEST)

    report = await service.release_stale_holds(now=datetime.utcnow() + LATER)

    assert report.released == 0
    assert await reserved_on(service, unit.id) == 2


# Reads

@pytest.mark.asyncio
async def test_get_reservation_visibility(service, experience):
    resource, unit = experience
    result = await service.create(GUEST, resource.id, unit.id, 1)

    assert (await service.get_reservation(result.reservation.id, GUEST)).id == result.reservation.id
    assert (await service.get_reservation(result.reservation.id, HOST)).id == result.reservation.id
    with pytest.raises(AuthorizationError):
        await service.get_reservation(result.reservation.id, OTHER_GUEST)
    with pytest.raises(NotFoundError):
        await service.get_reservation(uuid4(), GUEST)


@pytest.mark.asyncio
async def test_listings_by_user_and_owner(service, experience, product):
    experience_resource, slot = experience
    product_resource, stock = product
    booking = await service.create(GUEST, experience_resource.id, slot.id, 1)
    order = await service.create(GUEST, product_resource.id, stock.id, 1)
    await service.create(OTHER_GUEST, experience_resource.id, slot.id, 2)
    await service.cancel(booking.reservation.id, GUEST)

    mine = await service.list_user_reservations(GUEST)
    hosted = await service.list_owner_reservations(HOST)
    cancelled = await service.list_user_reservations(GUEST, status=ReservationStatus.CANCELLED)

    assert [row["id"] for row in mine] == [str(order.reservation.id), str(booking.reservation.id)]
    assert {row["user_id"] for row in hosted} == {GUEST, OTHER_GUEST}
    assert len(hosted) == 2
    assert [row["id"] for row in cancelled] == [str(booking.reservation.id)]
