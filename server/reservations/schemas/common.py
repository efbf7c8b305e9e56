"""Common Pydantic schemas."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..domain.money import Money as MoneyValue


class Money(BaseModel):
    """Money representation with amount in minor units."""

    amount: int = Field(..., ge=0, description="Amount in minor units (e.g., centavos)")
    currency: str = Field(..., min_length=3, max_length=3, pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")

    @classmethod
    def from_value(cls, money: MoneyValue) -> "Money":
        return cls(amount=money.amount, currency=money.currency)

    def to_value(self) -> MoneyValue:
        return MoneyValue(self.amount, self.currency)


class FieldError(BaseModel):
    """A single request field that failed validation."""

    loc: List[str] = Field(..., description="Path to the offending field, e.g. ['body', 'quantity']")
    msg: str = Field(..., description="Validation message")
    type: str = Field(..., description="Validation error type")


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: str = Field(..., description="Stable error code, e.g. CAPACITY_EXCEEDED")
    retryable: bool = Field(False, description="Whether repeating the request may succeed")
    errors: Optional[List[FieldError]] = Field(None, description="Field validation errors")


# OpenAPI declarations shared by the RPC routers
PROBLEM_RESPONSES: Dict[Union[int, str], Dict[str, Any]] = {
    400: {"model": Problem, "description": "Invalid argument or transition"},
    401: {"model": Problem, "description": "Missing caller identity"},
    403: {"model": Problem, "description": "Caller may not act on this resource"},
    404: {"model": Problem, "description": "Not found"},
    409: {"model": Problem, "description": "Unavailable, capacity, concurrency or duplicate conflict"},
}
