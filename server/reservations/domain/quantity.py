"""Quantity value object (guest count or item count)."""

from dataclasses import dataclass

from ..core.exceptions import ValidationError


@dataclass(frozen=True)
class Quantity:
    """
    A positive number of seats or units.

    ``create`` validates once against the capacity snapshot seen at creation;
    the ledger enforces the real capacity when the hold is committed.
    """

    value: int

    @classmethod
    def of(cls, value: int) -> "Quantity":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"Quantity must be an integer, got {value!r}")
        if value < 1:
            raise ValidationError("Quantity must be at least 1", errors={"quantity": value})
        return cls(value=value)

    @classmethod
    def create(cls, value: int, capacity: int) -> "Quantity":
        quantity = cls.of(value)
        if quantity.value > capacity:
            raise ValidationError(
                f"Quantity {value} exceeds unit capacity {capacity}",
                errors={"quantity": value, "capacity": capacity},
            )
        return quantity

    def fits(self, available: int) -> bool:
        return self.value <= available

    def __int__(self) -> int:
        return self.value
