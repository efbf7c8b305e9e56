"""Reservation service: drives bookings and orders through their lifecycle."""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import (
    CacheBackend,
    CacheInvalidator,
    owner_reservations_key,
    read_through,
    user_reservations_key,
)
from ..core.config import Settings, settings
from ..core.events import EventDispatcher, EventType
from ..core.exceptions import (
    AuthorizationError,
    CapacityExceededError,
    ConcurrencyConflictError,
    DuplicateReservationError,
    NotFoundError,
    PaymentGatewayError,
    PaymentIncompleteError,
    ProblemDetailsException,
    RefundFailedError,
    UnavailableError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..domain.quantity import Quantity
from ..domain.status import ReservationStatus
from ..models.inventory import InventoryUnit
from ..models.reservation import CancelledBy, Reservation, ReservationKind
from ..models.resource import Resource, ResourceKind
from ..schemas.reservation import Reservation as ReservationView
from .ledger_service import InventoryLedger
from .payment_gateway import PaymentGateway, SettlementStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


_EVENT_TYPES = {
    ReservationKind.BOOKING.value: {
        "created": EventType.BOOKING_CREATED,
        "confirmed": EventType.BOOKING_CONFIRMED,
        "cancelled": EventType.BOOKING_CANCELLED,
        "completed": EventType.BOOKING_COMPLETED,
    },
    ReservationKind.ORDER.value: {
        "created": EventType.ORDER_CREATED,
        "confirmed": EventType.ORDER_PAID,
        "shipped": EventType.ORDER_SHIPPED,
        "cancelled": EventType.ORDER_CANCELLED,
        "completed": EventType.ORDER_DELIVERED,
        "payment_failed": EventType.ORDER_PAYMENT_FAILED,
        "refunded": EventType.ORDER_REFUNDED,
    },
}


@dataclass(frozen=True)
class RetryPolicy:
    """Budget for retrying an operation after a ledger version conflict."""

    attempts: int = 3
    base_delay_ms: int = 100
    jitter_ms: int = 50

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            attempts=config.conflict_retry_attempts,
            base_delay_ms=config.conflict_retry_delay_ms,
            jitter_ms=config.conflict_retry_jitter_ms,
        )

    def delay_seconds(self) -> float:
        return (self.base_delay_ms + random.uniform(0, self.jitter_ms)) / 1000


@dataclass
class ReservationResult:
    """A created reservation and the secret the client needs to pay for it."""

    reservation: Reservation
    client_secret: Optional[str]


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation sweep."""

    expired: int = 0
    released_failed: int = 0
    confirmed: int = 0
    errors: int = 0

    @property
    def released(self) -> int:
        return self.expired + self.released_failed


class ReservationService:
    """
    Coordinates the ledger, the payment gateway and the reservation record.

    Ledger writes and reservation rows commit together; payment calls happen
    outside any database transaction. Version conflicts are retried from a
    fresh read up to the retry policy's budget.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        cache: Optional[CacheBackend] = None,
        events: Optional[EventDispatcher] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.gateway = gateway
        self.ledger = InventoryLedger(db)
        self.cache = cache
        self.invalidator = CacheInvalidator(cache)
        self.events = events
        self.retry_policy = retry_policy or RetryPolicy.from_settings(config)
        self.cache_ttl_seconds = config.cache_ttl_seconds
        self.hold_ttl = timedelta(minutes=config.hold_ttl_minutes)
        self.batch_size = config.reconciliation_batch_size

    # Lifecycle operations

    async def create(
        self,
        user_id: str,
        resource_id: UUID,
        unit_id: UUID,
        quantity: int,
    ) -> ReservationResult:
        """
        Hold inventory for a user and open a payment intent for it.

        Returns:
            The reservation, ``pending`` on success, with the payment client secret

        Raises:
            NotFoundError: If the resource or unit does not exist
            ValidationError: If the unit belongs to another resource or quantity is not positive
            UnavailableError: If the resource is not active or the unit is closed
            CapacityExceededError: If quantity exceeds what the unit has left, or its capacity
            DuplicateReservationError: If the user already holds an active reservation for the unit
            ConcurrencyConflictError: If the retry budget ran out
            PaymentGatewayError: If the intent could not be created; the reservation is
                left ``payment_failed`` with its inventory still held
        """
        reservation = await self._with_conflict_retry(
            "create",
            lambda: self._reserve(user_id, resource_id, unit_id, quantity),
        )
        metrics_collector.record_transition(reservation.kind, ReservationStatus.PENDING_PAYMENT.value)

        resource = await self._get_resource(reservation.resource_id)
        await self._end_transaction()

        try:
            intent = await self.gateway.create_intent(
                amount=reservation.total_amount,
                currency=reservation.total_currency,
                description=f"{resource.title} x{reservation.quantity}",
                metadata={
                    "reservation_id": str(reservation.id),
                    "user_id": user_id,
                    "resource_id": str(resource.id),
                    "kind": reservation.kind,
                },
            )
        except PaymentGatewayError as exc:
            reservation.mark_payment_failed(reason=exc.message)
            await self.db.commit()
            metrics_collector.record_transition(reservation.kind, ReservationStatus.PAYMENT_FAILED.value)

            logger.error(
                "Payment intent creation failed; inventory stays held until reconciliation",
                extra={
                    "reservation_id": str(reservation.id),
                    "unit_id": str(reservation.unit_id),
                    "quantity": reservation.quantity,
                    "provider_message": exc.provider_message,
                }
            )
            await self._after_transition(reservation, "payment_failed", inventory_changed=True)
            raise

        reservation.mark_pending(intent.provider_reference)
        await self.db.commit()
        metrics_collector.record_transition(reservation.kind, ReservationStatus.PENDING.value)

        logger.info(
            "Reservation created",
            extra={
                "reservation_id": str(reservation.id),
                "user_id": user_id,
                "resource_id": str(resource_id),
                "unit_id": str(unit_id),
                "quantity": reservation.quantity,
                "total_amount": reservation.total_amount,
                "currency": reservation.total_currency,
                "payment_reference": reservation.payment_reference,
            }
        )

        await self._after_transition(reservation, "created", inventory_changed=True)
        return ReservationResult(reservation=reservation, client_secret=intent.client_secret)

    async def confirm(self, reservation_id: UUID, actor_user_id: str) -> Reservation:
        """
        Confirm a reservation once its payment has settled.

        Raises:
            NotFoundError: If the reservation does not exist
            AuthorizationError: If the actor does not hold the reservation
            AlreadyProcessedError: If the reservation is already confirmed or terminal
            PaymentIncompleteError: If the provider has not settled the payment
            PaymentGatewayError: If the settlement lookup failed
        """
        reservation = await self._get_reservation(reservation_id)
        try:
            if reservation.user_id != actor_user_id:
                raise AuthorizationError("Only the reservation holder can confirm it")
            reservation.current_status.ensure_transition(ReservationStatus.CONFIRMED)
        except ProblemDetailsException:
            await self.db.rollback()
            raise

        payment_reference = reservation.payment_reference
        await self._end_transaction()

        if payment_reference:
            settlement = await self.gateway.get_status(payment_reference)
            if settlement is not SettlementStatus.SUCCEEDED:
                logger.info(
                    "Confirmation refused - payment not settled",
                    extra={"reservation_id": str(reservation_id), "settlement_status": settlement.value}
                )
                raise PaymentIncompleteError(str(reservation_id), settlement.value)

        return await self._apply_confirmation(reservation_id)

    async def cancel(
        self,
        reservation_id: UUID,
        actor_user_id: str,
        reason: Optional[str] = None,
    ) -> Reservation:
        """
        Cancel a reservation, refunding first when it was paid, then release its inventory.

        Raises:
            NotFoundError: If the reservation does not exist
            AuthorizationError: If the actor is neither the holder nor the resource owner
            AlreadyProcessedError: If the reservation is already terminal
            RefundFailedError: If the refund failed; nothing was changed
            ConcurrencyConflictError: If the release ran out of retries; a successful
                refund is already recorded, so calling cancel again only releases
        """
        reservation = await self._get_reservation(reservation_id)
        resource = await self._get_resource(reservation.resource_id)

        status = reservation.current_status
        try:
            if reservation.user_id == actor_user_id:
                cancelled_by = CancelledBy.CUSTOMER
            elif resource.is_owned_by(actor_user_id):
                cancelled_by = CancelledBy.OWNER
            else:
                raise AuthorizationError("Only the reservation holder or the resource owner can cancel it")
            status.ensure_transition(ReservationStatus.CANCELLED)
        except ProblemDetailsException:
            await self.db.rollback()
            raise

        await self._end_transaction()

        if reservation.payment_reference:
            if status is not ReservationStatus.CONFIRMED:
                await self._cancel_intent(reservation)
            elif reservation.is_refunded:
                logger.info(
                    "Refund already recorded; releasing inventory",
                    extra={"reservation_id": str(reservation_id), "refunded_at": reservation.refunded_at.isoformat()}
                )
            else:
                await self._refund(reservation)
                await self._record_refund(reservation_id)

        reservation = await self._with_conflict_retry(
            "cancel",
            lambda: self._release_hold(reservation_id, cancel_reason=reason, cancelled_by=cancelled_by),
        )
        refunded = reservation.is_refunded
        metrics_collector.record_transition(reservation.kind, ReservationStatus.CANCELLED.value)

        logger.info(
            "Reservation cancelled",
            extra={
                "reservation_id": str(reservation_id),
                "cancelled_by": cancelled_by.value,
                "previous_status": status.value,
                "refunded": refunded,
                "released_quantity": reservation.quantity,
            }
        )

        await self._after_transition(reservation, "cancelled", inventory_changed=True)
        if refunded:
            await self._after_transition(reservation, "refunded", inventory_changed=False)
        return reservation

    async def ship(
        self,
        reservation_id: UUID,
        actor_user_id: str,
        tracking_number: Optional[str] = None,
    ) -> Reservation:
        """
        Record that a paid order was handed to the carrier.

        The order stays confirmed; ``complete`` later marks it delivered.

        Raises:
            NotFoundError: If the reservation does not exist
            AuthorizationError: If the actor does not own the product
            ValidationError: If the reservation is an experience booking
            AlreadyProcessedError / InvalidTransitionError: If the order is not confirmed or already shipped
        """
        reservation = await self._get_reservation(reservation_id)
        resource = await self._get_resource(reservation.resource_id)

        try:
            if not resource.is_owned_by(actor_user_id):
                raise AuthorizationError("Only the product owner can ship an order")
            if reservation.kind != ReservationKind.ORDER.value:
                raise ValidationError("Only product orders can be shipped")
            reservation.mark_shipped(tracking_number)
        except ProblemDetailsException:
            await self.db.rollback()
            raise

        await self.db.commit()
        logger.info(
            "Order shipped",
            extra={
                "reservation_id": str(reservation_id),
                "owner_id": actor_user_id,
                "tracking_number": tracking_number,
            }
        )

        await self._after_transition(reservation, "shipped", inventory_changed=False)
        return reservation

    async def complete(self, reservation_id: UUID, actor_user_id: str) -> Reservation:
        """
        Mark a confirmed reservation as delivered; capacity stays consumed.

        Raises:
            NotFoundError: If the reservation does not exist
            AuthorizationError: If the actor does not own the resource
            AlreadyProcessedError / InvalidTransitionError: If the reservation is not confirmed
        """
        reservation = await self._get_reservation(reservation_id)
        resource = await self._get_resource(reservation.resource_id)

        try:
            if not resource.is_owned_by(actor_user_id):
                raise AuthorizationError("Only the resource owner can complete a reservation")
            reservation.complete()
        except ProblemDetailsException:
            await self.db.rollback()
            raise

        await self.db.commit()
        metrics_collector.record_transition(reservation.kind, ReservationStatus.COMPLETED.value)
        logger.info(
            "Reservation completed",
            extra={"reservation_id": str(reservation_id), "owner_id": actor_user_id}
        )

        await self._after_transition(reservation, "completed", inventory_changed=False)
        return reservation

    # Webhook-driven transitions

    async def mark_payment_succeeded(self, reservation_id: UUID) -> Reservation:
        """
        Confirm a reservation because the provider reported the payment settled.

        Repeat deliveries for an already confirmed or completed reservation are no-ops.
        """
        reservation = await self._get_reservation(reservation_id)
        if reservation.current_status in (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED):
            await self._end_transaction()
            logger.info(
                "Payment success already applied",
                extra={"reservation_id": str(reservation_id), "status": reservation.status}
            )
            return reservation

        await self._end_transaction()
        return await self._apply_confirmation(reservation_id)

    async def mark_payment_failed(self, reservation_id: UUID, reason: str) -> Reservation:
        """
        Record a provider-reported payment failure; the hold is released by reconciliation.

        Repeat deliveries for an already failed reservation are no-ops.
        """
        reservation = await self._get_reservation(reservation_id)
        if reservation.current_status is ReservationStatus.PAYMENT_FAILED:
            await self._end_transaction()
            return reservation

        try:
            reservation.mark_payment_failed(reason)
        except ProblemDetailsException:
            await self.db.rollback()
            raise

        await self.db.commit()
        metrics_collector.record_transition(reservation.kind, ReservationStatus.PAYMENT_FAILED.value)
        logger.warning(
            "Payment failed",
            extra={"reservation_id": str(reservation_id), "reason": reason}
        )

        await self._after_transition(reservation, "payment_failed", inventory_changed=False)
        return reservation

    # Reconciliation

    async def release_stale_holds(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """
        Release inventory held by reservations that will never be paid.

        - ``pending_payment`` older than the hold TTL: cancelled as expired, inventory released
        - ``payment_failed`` still holding inventory: inventory released
        - ``pending`` older than the hold TTL: confirmed if the provider settled it,
          otherwise the intent is cancelled and the hold expired

        A failure on one reservation is logged and does not stop the sweep.
        """
        now = now or datetime.utcnow()
        cutoff = now - self.hold_ttl
        report = ReconciliationReport()

        unpaid_ids = await self._find_holding(ReservationStatus.PENDING_PAYMENT, Reservation.created_at < cutoff)
        failed_ids = await self._find_holding(ReservationStatus.PAYMENT_FAILED)
        pending_ids = await self._find_holding(ReservationStatus.PENDING, Reservation.pending_at < cutoff)
        await self._end_transaction()

        for reservation_id in unpaid_ids:
            if await self._sweep_one(reservation_id, self._expire(reservation_id, now), report):
                report.expired += 1
                metrics_collector.record_hold_released("expired")

        for reservation_id in failed_ids:
            if await self._sweep_one(reservation_id, self._release_failed(reservation_id, now), report):
                report.released_failed += 1
                metrics_collector.record_hold_released("payment_failed")

        for reservation_id in pending_ids:
            outcome = await self._sweep_one(reservation_id, self._settle_or_expire(reservation_id, now), report)
            if outcome == "confirmed":
                report.confirmed += 1
            elif outcome == "expired":
                report.expired += 1
                metrics_collector.record_hold_released("unsettled")

        if report.released or report.confirmed or report.errors:
            logger.info(
                "Reconciliation sweep finished",
                extra={
                    "expired": report.expired,
                    "released_failed": report.released_failed,
                    "confirmed": report.confirmed,
                    "errors": report.errors,
                }
            )
        return report

    # Reads

    async def get_reservation(self, reservation_id: UUID, actor_user_id: str) -> Reservation:
        """Get a reservation visible to its holder or the resource owner."""
        reservation = await self._get_reservation(reservation_id)
        if reservation.user_id != actor_user_id:
            resource = await self._get_resource(reservation.resource_id)
            if not resource.is_owned_by(actor_user_id):
                await self._end_transaction()
                raise AuthorizationError("Only the reservation holder or the resource owner can view it")
        await self._end_transaction()
        return reservation

    async def list_user_reservations(
        self,
        user_id: str,
        status: Optional[ReservationStatus] = None,
    ) -> List[Dict[str, Any]]:
        """List a user's reservations, newest first, through the read cache."""

        async def load() -> List[Dict[str, Any]]:
            stmt = (
                select(Reservation)
                .where(Reservation.user_id == user_id)
                .order_by(Reservation.created_at.desc())
            )
            result = await self.db.execute(stmt)
            rows = [ReservationView.from_model(r).model_dump(mode="json") for r in result.scalars()]
            await self._end_transaction()
            return rows

        rows = await read_through(self.cache, user_reservations_key(user_id), self.cache_ttl_seconds, load)
        return self._filter_status(rows, status)

    async def list_owner_reservations(
        self,
        owner_id: str,
        status: Optional[ReservationStatus] = None,
    ) -> List[Dict[str, Any]]:
        """List reservations on resources the owner runs, newest first, through the read cache."""

        async def load() -> List[Dict[str, Any]]:
            stmt = (
                select(Reservation)
                .join(Resource, Resource.id == Reservation.resource_id)
                .where(Resource.owner_id == owner_id)
                .order_by(Reservation.created_at.desc())
            )
            result = await self.db.execute(stmt)
            rows = [ReservationView.from_model(r).model_dump(mode="json") for r in result.scalars()]
            await self._end_transaction()
            return rows

        rows = await read_through(self.cache, owner_reservations_key(owner_id), self.cache_ttl_seconds, load)
        return self._filter_status(rows, status)

    # Internals

    async def _reserve(self, user_id: str, resource_id: UUID, unit_id: UUID, quantity: int) -> Reservation:
        """One attempt at holding inventory and writing the reservation row."""
        unit = await self.ledger.get(unit_id)
        resource = await self._get_resource(resource_id)

        if unit.resource_id != resource_id:
            raise ValidationError(f"Inventory unit {unit_id} does not belong to resource {resource_id}")

        if not resource.is_active:
            raise UnavailableError(
                f"'{resource.title}' is not available ({resource.status})",
                resource_id=str(resource_id),
            )
        if not unit.is_open:
            raise UnavailableError(
                f"'{unit.slot_key}' is closed for reservations",
                resource_id=str(resource_id),
                unit_id=str(unit_id),
            )

        requested = Quantity.of(quantity)
        if not requested.fits(unit.available):
            logger.warning(
                "Reservation failed - insufficient capacity",
                extra={
                    "unit_id": str(unit_id),
                    "requested_quantity": requested.value,
                    "available": unit.available,
                    "version": unit.version,
                }
            )
            raise CapacityExceededError(str(unit_id), requested.value, unit.available)

        await self._ensure_no_active_reservation(user_id, unit_id)

        total = resource.unit_price * requested.value
        kind = ReservationKind.BOOKING if resource.kind == ResourceKind.EXPERIENCE.value else ReservationKind.ORDER
        reservation = Reservation(
            id=uuid4(),
            user_id=user_id,
            resource_id=resource_id,
            unit_id=unit_id,
            kind=kind.value,
            quantity=requested.value,
            total_amount=total.amount,
            total_currency=total.currency,
            status=ReservationStatus.PENDING_PAYMENT.value,
        )

        await self.ledger.try_reserve(
            unit.id,
            unit.version,
            requested.value,
            reservation_id=reservation.id,
            reason=f"{kind.value} created",
        )
        self.db.add(reservation)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateReservationError(user_id, str(unit_id))

        return reservation

    async def _ensure_no_active_reservation(self, user_id: str, unit_id: UUID) -> None:
        active = [status.value for status in ReservationStatus if status.is_active()]
        stmt = select(Reservation.id).where(
            Reservation.user_id == user_id,
            Reservation.unit_id == unit_id,
            Reservation.status.in_(active),
        )
        result = await self.db.execute(stmt)
        if result.first() is not None:
            raise DuplicateReservationError(user_id, str(unit_id))

    async def _apply_confirmation(self, reservation_id: UUID) -> Reservation:
        reservation = await self._get_reservation(reservation_id)
        try:
            reservation.confirm()
        except ProblemDetailsException:
            await self.db.rollback()
            raise

        await self.db.commit()
        metrics_collector.record_transition(reservation.kind, ReservationStatus.CONFIRMED.value)
        logger.info(
            "Reservation confirmed",
            extra={"reservation_id": str(reservation_id), "payment_reference": reservation.payment_reference}
        )

        await self._after_transition(reservation, "confirmed", inventory_changed=False)
        return reservation

    async def _release_hold(
        self,
        reservation_id: UUID,
        cancel_reason: Optional[str] = None,
        cancelled_by: Optional[CancelledBy] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """One attempt at returning a reservation's quantity, cancelling it when ``cancelled_by`` is given."""
        reservation = await self._get_reservation(reservation_id)

        if cancelled_by is not None:
            reservation.cancel(cancel_reason, cancelled_by, now=now)
        elif not reservation.current_status.is_terminal():
            await self._end_transaction()
            return reservation

        if reservation.holds_inventory:
            unit = await self.ledger.get(reservation.unit_id)
            await self.ledger.try_reserve(
                unit.id,
                unit.version,
                -reservation.quantity,
                reservation_id=reservation.id,
                reason=f"{reservation.kind} {cancel_reason or reservation.status}",
            )
            reservation.mark_inventory_released(now)

        await self.db.commit()
        return reservation

    async def _refund(self, reservation: Reservation) -> None:
        try:
            refunded = await self.gateway.refund(
                reservation.payment_reference,
                idempotency_key=f"refund:{reservation.id}",
            )
        except PaymentGatewayError as exc:
            logger.error(
                "Refund failed; cancellation aborted",
                extra={"reservation_id": str(reservation.id), "provider_message": exc.provider_message}
            )
            raise RefundFailedError(str(reservation.id), provider_message=exc.provider_message)

        if not refunded:
            logger.error(
                "Refund refused by provider; cancellation aborted",
                extra={"reservation_id": str(reservation.id), "payment_reference": reservation.payment_reference}
            )
            raise RefundFailedError(str(reservation.id))

    async def _record_refund(self, reservation_id: UUID) -> None:
        reservation = await self._get_reservation(reservation_id)
        reservation.mark_refunded()
        await self.db.commit()
        logger.info(
            "Refund recorded",
            extra={"reservation_id": str(reservation_id), "payment_reference": reservation.payment_reference}
        )

    async def _cancel_intent(self, reservation: Reservation) -> None:
        """Cancel an unsettled intent; failure only leaves an orphaned intent at the provider."""
        try:
            cancelled = await self.gateway.cancel(reservation.payment_reference)
        except PaymentGatewayError as exc:
            cancelled = False
            logger.warning(
                "Payment intent cancel errored",
                extra={"reservation_id": str(reservation.id), "provider_message": exc.provider_message}
            )
        if not cancelled:
            logger.warning(
                "Payment intent could not be cancelled",
                extra={"reservation_id": str(reservation.id), "payment_reference": reservation.payment_reference}
            )

    async def _expire(self, reservation_id: UUID, now: datetime) -> Reservation:
        reservation = await self._with_conflict_retry(
            "expire",
            lambda: self._release_hold(
                reservation_id,
                cancel_reason="expired",
                cancelled_by=CancelledBy.SYSTEM,
                now=now,
            ),
        )
        metrics_collector.record_transition(reservation.kind, ReservationStatus.CANCELLED.value)
        await self._after_transition(reservation, "cancelled", inventory_changed=True)
        return reservation

    async def _release_failed(self, reservation_id: UUID, now: datetime) -> Reservation:
        reservation = await self._with_conflict_retry(
            "release",
            lambda: self._release_hold(reservation_id, now=now),
        )
        await self._after_transition(reservation, None, inventory_changed=True)
        return reservation

    async def _settle_or_expire(self, reservation_id: UUID, now: datetime) -> str:
        reservation = await self._get_reservation(reservation_id)
        await self._end_transaction()

        settlement = SettlementStatus.PENDING
        if reservation.payment_reference:
            settlement = await self.gateway.get_status(reservation.payment_reference)

        if settlement is SettlementStatus.SUCCEEDED:
            logger.warning(
                "Settled payment found without confirmation; confirming",
                extra={"reservation_id": str(reservation_id)}
            )
            await self._apply_confirmation(reservation_id)
            return "confirmed"

        if reservation.payment_reference:
            await self._cancel_intent(reservation)
        await self._expire(reservation_id, now)
        return "expired"

    async def _sweep_one(self, reservation_id: UUID, step: Awaitable[Any], report: ReconciliationReport) -> Any:
        try:
            return await step
        except ProblemDetailsException as exc:
            await self.db.rollback()
            report.errors += 1
            logger.warning(
                "Reconciliation skipped reservation",
                extra={"reservation_id": str(reservation_id), "code": exc.code, "error": exc.message}
            )
            return None

    async def _find_holding(self, status: ReservationStatus, *conditions) -> List[UUID]:
        stmt = (
            select(Reservation.id)
            .where(
                Reservation.status == status.value,
                Reservation.inventory_released_at.is_(None),
                *conditions,
            )
            .order_by(Reservation.created_at)
            .limit(self.batch_size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def _with_conflict_retry(self, operation: str, attempt: Callable[[], Awaitable[T]]) -> T:
        attempts = self.retry_policy.attempts
        for attempt_number in range(1, attempts + 1):
            try:
                return await attempt()
            except ConcurrencyConflictError as exc:
                await self.db.rollback()
                if attempt_number >= attempts:
                    metrics_collector.record_retries_exhausted(operation)
                    logger.error(
                        "Conflict retry budget exhausted",
                        extra={"operation": operation, "attempts": attempts, "unit_id": exc.unit_id}
                    )
                    raise
                delay = self.retry_policy.delay_seconds()
                logger.warning(
                    "Ledger conflict, retrying",
                    extra={
                        "operation": operation,
                        "attempt": attempt_number,
                        "unit_id": exc.unit_id,
                        "delay_ms": round(delay * 1000),
                    }
                )
                await asyncio.sleep(delay)
            except Exception:
                await self.db.rollback()
                raise
        raise RuntimeError("Retry loop exited without a result")

    async def _get_reservation(self, reservation_id: UUID) -> Reservation:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        reservation = result.scalar_one_or_none()
        if not reservation:
            await self._end_transaction()
            raise NotFoundError(resource_type="reservation", resource_id=str(reservation_id))
        return reservation

    async def _get_resource(self, resource_id: UUID) -> Resource:
        stmt = (
            select(Resource)
            .where(Resource.id == resource_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        resource = result.scalar_one_or_none()
        if not resource:
            raise NotFoundError(resource_type="resource", resource_id=str(resource_id))
        return resource

    async def _end_transaction(self) -> None:
        """Close the open transaction without expiring loaded objects."""
        await self.db.commit()

    async def _after_transition(
        self,
        reservation: Reservation,
        event_key: Optional[str],
        inventory_changed: bool,
    ) -> None:
        """Invalidate cached views and emit the matching event; neither can fail the operation."""
        resource = await self._get_resource(reservation.resource_id)
        unit = await self.db.get(InventoryUnit, reservation.unit_id)
        await self._end_transaction()

        await self.invalidator.invalidate_reservation_views(
            user_id=reservation.user_id,
            owner_id=resource.owner_id,
            resource_id=resource.id,
            inventory_changed=inventory_changed,
        )

        if event_key is None or self.events is None:
            return
        event_type = _EVENT_TYPES.get(reservation.kind, {}).get(event_key)
        if event_type is None:
            return

        try:
            self.events.emit(event_type, self._event_payload(reservation, resource, unit))
        except Exception as exc:
            logger.warning(
                "Event emission failed",
                extra={"event_type": event_type.value, "reservation_id": str(reservation.id), "error": str(exc)}
            )

    @staticmethod
    def _event_payload(
        reservation: Reservation,
        resource: Resource,
        unit: Optional[InventoryUnit],
    ) -> Dict[str, Any]:
        return {
            "reservation_id": str(reservation.id),
            "kind": reservation.kind,
            "status": reservation.status,
            "user_id": reservation.user_id,
            "owner_id": resource.owner_id,
            "resource_id": str(resource.id),
            "resource_title": resource.title,
            "unit_id": str(reservation.unit_id),
            "slot_key": unit.slot_key if unit else None,
            "starts_at": unit.starts_at.isoformat() if unit and unit.starts_at else None,
            "ends_at": unit.ends_at.isoformat() if unit and unit.ends_at else None,
            "quantity": reservation.quantity,
            "total_amount": reservation.total_amount,
            "currency": reservation.total_currency,
            "cancellation_reason": reservation.cancellation_reason,
            "tracking_number": reservation.tracking_number,
        }

    @staticmethod
    def _filter_status(
        rows: List[Dict[str, Any]],
        status: Optional[ReservationStatus],
    ) -> List[Dict[str, Any]]:
        if status is None:
            return rows
        return [row for row in rows if row["status"] == status.value]
