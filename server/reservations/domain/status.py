"""Reservation state machine."""

from enum import Enum

from ..core.exceptions import AlreadyProcessedError, InvalidTransitionError


class ReservationStatus(str, Enum):
    """
    Lifecycle of a booking or order.

    ::

        pending_payment -> pending -> confirmed -> completed
              |               |           |
              v               v           v
        payment_failed    cancelled   cancelled

    ``pending_payment`` is initial; ``completed``, ``cancelled`` and
    ``payment_failed`` are terminal. The predicates below are the only place
    transition legality is decided.
    """

    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"

    def can_be_marked_pending(self) -> bool:
        return self is ReservationStatus.PENDING_PAYMENT

    def can_be_marked_payment_failed(self) -> bool:
        return self in (ReservationStatus.PENDING_PAYMENT, ReservationStatus.PENDING)

    def can_be_confirmed(self) -> bool:
        return self in (ReservationStatus.PENDING_PAYMENT, ReservationStatus.PENDING)

    def can_be_cancelled(self) -> bool:
        return self in (
            ReservationStatus.PENDING_PAYMENT,
            ReservationStatus.PENDING,
            ReservationStatus.CONFIRMED,
        )

    def can_be_completed(self) -> bool:
        return self is ReservationStatus.CONFIRMED

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def is_active(self) -> bool:
        """Whether the reservation counts against the one-per-user-and-unit rule."""
        return self in ACTIVE_STATUSES

    def can_transition_to(self, target: "ReservationStatus") -> bool:
        checks = {
            ReservationStatus.PENDING: self.can_be_marked_pending,
            ReservationStatus.PAYMENT_FAILED: self.can_be_marked_payment_failed,
            ReservationStatus.CONFIRMED: self.can_be_confirmed,
            ReservationStatus.CANCELLED: self.can_be_cancelled,
            ReservationStatus.COMPLETED: self.can_be_completed,
        }
        check = checks.get(target)
        return check() if check else False

    def ensure_transition(self, target: "ReservationStatus") -> None:
        """
        Raise unless moving to ``target`` is legal.

        Raises:
            AlreadyProcessedError: The reservation is terminal or already in ``target``
            InvalidTransitionError: The move is illegal from a non-terminal state
        """
        if self.can_transition_to(target):
            return
        if self.is_terminal() or self is target:
            raise AlreadyProcessedError(self.value, target.value)
        raise InvalidTransitionError(self.value, target.value)


TERMINAL_STATUSES = frozenset({
    ReservationStatus.COMPLETED,
    ReservationStatus.CANCELLED,
    ReservationStatus.PAYMENT_FAILED,
})

ACTIVE_STATUSES = frozenset({
    ReservationStatus.PENDING_PAYMENT,
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
})
