"""Money value object kept in integer minor units."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ..core.exceptions import ValidationError

# Minor units per major unit; every currency the service sells in has two decimals
MINOR_UNIT_EXPONENT = 2
_MINOR_FACTOR = Decimal(10) ** MINOR_UNIT_EXPONENT


@dataclass(frozen=True)
class Money:
    """
    An amount of money in integer minor units (e.g. centavos).

    All arithmetic stays in integers so totals summed across line items never
    drift. Conversion from major units is exact: an amount with more precision
    than the minor unit is rejected rather than rounded.
    """

    amount: int
    currency: str

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValidationError(f"Money amount must be an integer number of minor units, got {self.amount!r}")
        if self.amount < 0:
            raise ValidationError(f"Money amount cannot be negative, got {self.amount}")
        if not isinstance(self.currency, str) or len(self.currency) != 3 or not self.currency.isalpha():
            raise ValidationError(f"Currency must be a 3-letter ISO 4217 code, got {self.currency!r}")
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def from_minor(cls, amount: int, currency: str) -> "Money":
        return cls(amount=amount, currency=currency)

    @classmethod
    def from_major(cls, amount: Decimal | str | int, currency: str) -> "Money":
        """Build from a major-unit amount such as ``Decimal("250.50")``."""
        if isinstance(amount, float):
            raise ValidationError("Money cannot be built from a float; pass a Decimal or string")
        try:
            major = Decimal(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Invalid money amount: {amount!r}") from None
        if not major.is_finite():
            raise ValidationError(f"Invalid money amount: {amount!r}")

        minor = major * _MINOR_FACTOR
        if minor != minor.to_integral_value():
            raise ValidationError(
                f"Amount {amount} has more precision than the currency's minor unit"
            )
        return cls(amount=int(minor), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=0, currency=currency)

    def to_major(self) -> Decimal:
        return Decimal(self.amount) / _MINOR_FACTOR

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        if other.currency != self.currency:
            raise ValidationError(f"Cannot add {other.currency} to {self.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, factor: int) -> "Money":
        if isinstance(factor, bool) or not isinstance(factor, int):
            return NotImplemented
        if factor < 0:
            raise ValidationError("Money cannot be multiplied by a negative quantity")
        return Money(self.amount * factor, self.currency)

    __rmul__ = __mul__

    def __str__(self) -> str:
        return f"{self.to_major():.{MINOR_UNIT_EXPONENT}f} {self.currency}"
