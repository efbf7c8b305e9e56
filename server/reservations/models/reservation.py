"""Reservation model definition (bookings and orders)."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base
from ..core.exceptions import AlreadyProcessedError, InvalidTransitionError
from ..domain.money import Money
from ..domain.status import ReservationStatus

if TYPE_CHECKING:
    from .inventory import InventoryUnit
    from .resource import Resource


class ReservationKind(str, Enum):
    """Booking of an experience slot or order of a product."""
    BOOKING = "booking"
    ORDER = "order"


class CancelledBy(str, Enum):
    """Who initiated a cancellation."""
    CUSTOMER = "customer"
    OWNER = "owner"
    SYSTEM = "system"


_ACTIVE_STATUS_SQL = "status IN ('pending_payment', 'pending', 'confirmed')"


class Reservation(Base):
    """
    A user's claim on inventory of one unit.

    Status changes go through the transition methods below so that every move
    is checked against ``ReservationStatus``.
    """

    __tablename__ = "reservations"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    unit_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("inventory_units.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Total charged (stored as minor units)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    total_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReservationStatus.PENDING_PAYMENT.value,
        index=True
    )

    # Payment intent id at the provider
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Failure and cancellation details
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Set once the held quantity has been returned to the ledger
    inventory_released_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Set once the provider accepted the refund; a retried cancel skips the refund
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Fulfilment of a confirmed order; status stays confirmed until delivery
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Transition timestamps
    pending_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payment_failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="ck_reservation_total_non_negative"),
        CheckConstraint("length(total_currency) = 3", name="ck_reservation_currency_length"),
        CheckConstraint("length(user_id) > 0", name="ck_reservation_user_id_not_empty"),
        CheckConstraint("kind IN ('booking', 'order')", name="ck_reservation_kind_valid"),
        # At most one active reservation per user and unit
        Index(
            "uq_reservation_active_user_unit",
            "user_id",
            "unit_id",
            unique=True,
            sqlite_where=text(_ACTIVE_STATUS_SQL),
            postgresql_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    # Relationships
    resource: Mapped["Resource"] = relationship("Resource", lazy="raise")
    unit: Mapped["InventoryUnit"] = relationship("InventoryUnit", lazy="raise")

    @property
    def current_status(self) -> ReservationStatus:
        return ReservationStatus(self.status)

    @property
    def total(self) -> Money:
        return Money(self.total_amount, self.total_currency)

    @property
    def holds_inventory(self) -> bool:
        return self.inventory_released_at is None

    @property
    def is_shipped(self) -> bool:
        return self.shipped_at is not None

    @property
    def is_refunded(self) -> bool:
        return self.refunded_at is not None

    def mark_pending(self, payment_reference: str, now: datetime | None = None) -> None:
        self.current_status.ensure_transition(ReservationStatus.PENDING)
        self.status = ReservationStatus.PENDING.value
        self.payment_reference = payment_reference
        self.pending_at = now or datetime.utcnow()

    def mark_payment_failed(self, reason: str, now: datetime | None = None) -> None:
        self.current_status.ensure_transition(ReservationStatus.PAYMENT_FAILED)
        self.status = ReservationStatus.PAYMENT_FAILED.value
        self.failure_reason = reason
        self.payment_failed_at = now or datetime.utcnow()

    def confirm(self, now: datetime | None = None) -> None:
        self.current_status.ensure_transition(ReservationStatus.CONFIRMED)
        self.status = ReservationStatus.CONFIRMED.value
        self.confirmed_at = now or datetime.utcnow()

    def cancel(self, reason: str | None, cancelled_by: CancelledBy, now: datetime | None = None) -> None:
        self.current_status.ensure_transition(ReservationStatus.CANCELLED)
        self.status = ReservationStatus.CANCELLED.value
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by.value
        self.cancelled_at = now or datetime.utcnow()

    def complete(self, now: datetime | None = None) -> None:
        self.current_status.ensure_transition(ReservationStatus.COMPLETED)
        self.status = ReservationStatus.COMPLETED.value
        self.completed_at = now or datetime.utcnow()

    def mark_inventory_released(self, now: datetime | None = None) -> None:
        self.inventory_released_at = now or datetime.utcnow()

    def mark_refunded(self, now: datetime | None = None) -> None:
        self.refunded_at = now or datetime.utcnow()

    def mark_shipped(self, tracking_number: str | None = None, now: datetime | None = None) -> None:
        if self.shipped_at is not None or self.current_status.is_terminal():
            raise AlreadyProcessedError("shipped" if self.shipped_at else self.status, "shipped")
        if self.current_status is not ReservationStatus.CONFIRMED:
            raise InvalidTransitionError(self.status, "shipped")
        self.shipped_at = now or datetime.utcnow()
        self.tracking_number = tracking_number

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, user_id='{self.user_id}', unit_id={self.unit_id}, "
            f"quantity={self.quantity}, status={self.status})>"
        )
