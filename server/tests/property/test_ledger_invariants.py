"""Property-based tests for inventory ledger and reservation invariants."""

import asyncio
from datetime import datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import settings as hypothesis_settings
from hypothesis import strategies as st
from sqlalchemy import func, select

from reservations.core.database import Base, build_engine, build_session_factory
from reservations.core.exceptions import (
    AlreadyProcessedError,
    CapacityExceededError,
    ConcurrencyConflictError,
    DuplicateReservationError,
)
from reservations.domain.status import ACTIVE_STATUSES
from reservations.models import *  # noqa: F403 - Import all models
from reservations.models.reservation import Reservation
from reservations.models.resource import ResourceKind
from reservations.schemas.catalog import AddUnitRequest, CreateResourceRequest
from reservations.schemas.common import Money
from reservations.services.catalog_service import CatalogService
from reservations.services.ledger_service import InventoryLedger
from reservations.services.payment_gateway import MockPaymentGateway
from reservations.services.reservation_service import ReservationService, RetryPolicy

# Strategies for generating test data
capacity_values = st.integers(min_value=0, max_value=20)
deltas = st.integers(min_value=-8, max_value=8).filter(lambda delta: delta != 0)
ledger_ops = st.lists(st.tuples(deltas, st.booleans()), min_size=1, max_size=30)

user_ids = st.sampled_from(["ana", "bruno", "carla", "diego", "elena"])
reservation_actions = st.lists(
    st.tuples(st.sampled_from(["create", "cancel"]), user_ids, st.integers(min_value=1, max_value=4)),
    min_size=1,
    max_size=25,
)


def run(scenario):
    """Run a scenario against a fresh in-memory database."""

    async def main():
        engine = build_engine("sqlite+aiosqlite:///:memory:")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            async with build_session_factory(engine)() as session:
                await scenario(session)
        finally:
            await engine.dispose()

    asyncio.run(main())


async def seed_unit(session, kind: ResourceKind, capacity: int):
    """Create a resource with one unit and return their ids."""
    catalog = CatalogService(session)
    resource = await catalog.create_resource(
        CreateResourceRequest(
            kind=kind,
            title="Property Test Resource",
            unit_price=Money(amount=10000, currency="MXN"),
        ),
        owner_id="host-1",
    )
    starts_at = None
    if kind is ResourceKind.EXPERIENCE:
        starts_at = datetime.utcnow().replace(microsecond=0) + timedelta(days=30)
    unit = await catalog.add_unit(
        AddUnitRequest(resource_id=resource.id, capacity=capacity, starts_at=starts_at),
        actor="host-1",
    )
    return resource.id, unit.id


@hypothesis_settings(max_examples=40, deadline=None)
@given(capacity=capacity_values, ops=ledger_ops)
def test_ledger_matches_model(capacity, ops):
    """
    Reserved stays within [0, capacity] and the version counts successful writes.

    Each op either uses the current version or a stale one; stale writes and
    writes that would leave the bounds must be refused without any change.
    """

    async def scenario(session):
        _, unit_id = await seed_unit(session, ResourceKind.EXPERIENCE, capacity)
        ledger = InventoryLedger(session)
        reserved, version, successes = 0, 1, 0

        for delta, use_stale_version in ops:
            expected = version - 1 if use_stale_version else version
            should_apply = not use_stale_version and 0 <= reserved + delta <= capacity
            try:
                updated = await ledger.try_reserve(unit_id, expected, delta)
                await session.commit()
            except ConcurrencyConflictError:
                await session.rollback()
                assert not should_apply
            else:
                assert should_apply
                reserved += delta
                version += 1
                successes += 1
                assert updated.reserved == reserved

            current = await ledger.get(unit_id)
            assert 0 <= current.reserved <= current.capacity
            assert current.reserved == reserved
            assert current.version == version

        entries = await ledger.get_entries(unit_id)
        assert len(entries) == successes
        assert sum(entry.delta for entry in entries) == reserved
        assert [entry.version_after for entry in entries] == list(range(2, successes + 2))

    run(scenario)


@hypothesis_settings(max_examples=30, deadline=None)
@given(capacity=st.integers(min_value=1, max_value=10), actions=reservation_actions)
def test_active_reservations_account_for_all_held_inventory(capacity, actions):
    """The unit's reserved count always equals the quantity held by active reservations."""

    async def scenario(session):
        resource_id, unit_id = await seed_unit(session, ResourceKind.EXPERIENCE, capacity)
        service = ReservationService(
            session,
            MockPaymentGateway(),
            retry_policy=RetryPolicy(attempts=3, base_delay_ms=0, jitter_ms=0),
        )
        active = {}

        for action, user_id, quantity in actions:
            if action == "create":
                available = capacity - sum(taken for _, taken in active.values())
                if quantity > available:
                    expected_error = CapacityExceededError
                elif user_id in active:
                    expected_error = DuplicateReservationError
                else:
                    expected_error = None

                try:
                    result = await service.create(user_id, resource_id, unit_id, quantity)
                except (CapacityExceededError, DuplicateReservationError) as exc:
                    assert type(exc) is expected_error
                else:
                    assert expected_error is None
                    active[user_id] = (result.reservation.id, quantity)
            elif user_id in active:
                reservation_id, _ = active.pop(user_id)
                await service.cancel(reservation_id, user_id)

            held = await session.scalar(
                select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
                    Reservation.unit_id == unit_id,
                    Reservation.status.in_([status.value for status in ACTIVE_STATUSES]),
                )
            )
            current = await InventoryLedger(session).get(unit_id)
            await session.commit()

            assert current.reserved == held
            assert current.reserved <= capacity
            assert held == sum(quantity for _, quantity in active.values())

    run(scenario)


@hypothesis_settings(max_examples=20, deadline=None)
@given(quantity=st.integers(min_value=1, max_value=5))
def test_cancel_is_applied_once(quantity):
    """A second cancellation is refused and never releases inventory twice."""

    async def scenario(session):
        resource_id, unit_id = await seed_unit(session, ResourceKind.EXPERIENCE, 5)
        service = ReservationService(session, MockPaymentGateway())

        result = await service.create("ana", resource_id, unit_id, quantity)
        await service.cancel(result.reservation.id, "ana")
        with pytest.raises(AlreadyProcessedError):
            await service.cancel(result.reservation.id, "ana")

        current = await InventoryLedger(session).get(unit_id)
        assert current.reserved == 0
        assert current.version == 3

    run(scenario)
