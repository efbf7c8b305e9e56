"""Domain value objects for the reservation core."""

from .money import Money
from .quantity import Quantity
from .status import ReservationStatus

__all__ = [
    "Money",
    "Quantity",
    "ReservationStatus",
]
