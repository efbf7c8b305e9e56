"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    Every failure the reservation core reports carries a stable ``code`` and a
    ``retryable`` flag so clients can tell "retry payment" apart from
    "choose a different slot".

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    code: str = "ERROR"
    retryable: bool = False

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.message = detail or title
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
            "code": self.code,
            "retryable": self.retryable,
        }

        if detail:
            self.problem_details["detail"] = detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    def __str__(self) -> str:
        return self.message


class ValidationError(ProblemDetailsException):
    """Exception for invalid arguments."""

    code = "INVALID_ARGUMENT"

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Invalid Argument",
            detail=detail,
            type_uri="https://example.com/problems/invalid-argument",
            instance=instance,
            extensions=extensions,
        )


class InvalidTransitionError(ValidationError):
    """Exception when a reservation cannot move to the requested state."""

    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            detail=f"Cannot move reservation from '{current_status}' to '{target_status}'",
            errors={"current_status": current_status, "target_status": target_status},
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for missing caller identity."""

    code = "UNAUTHENTICATED"

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://example.com/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception when the actor is not allowed to act on a resource."""

    code = "FORBIDDEN"

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://example.com/problems/access-forbidden",
            instance=instance,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    code = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    code = "CONFLICT"

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
        title: str = "Resource Conflict",
        type_uri: str = "https://example.com/problems/resource-conflict",
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title=title,
            detail=detail,
            type_uri=type_uri,
            instance=instance,
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    code = "INTERNAL"

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not error_id:
            error_id = str(uuid.uuid4())

        extensions = {
            "error_id": error_id,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri="https://example.com/problems/internal-server-error",
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class UnavailableError(ConflictError):
    """Exception when a resource or inventory unit is not bookable."""

    code = "UNAVAILABLE"

    def __init__(self, detail: str, resource_id: Optional[str] = None, unit_id: Optional[str] = None):
        conflicting = {}
        if resource_id:
            conflicting["resource_id"] = resource_id
        if unit_id:
            conflicting["unit_id"] = unit_id
        super().__init__(
            detail=detail,
            conflicting_resource=conflicting or None,
            title="Unavailable",
            type_uri="https://example.com/problems/unavailable",
        )


class CapacityExceededError(ConflictError):
    """Exception when requested quantity exceeds the unit's available capacity."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, unit_id: str, requested_quantity: int, available_quantity: int):
        super().__init__(
            detail=(
                f"Requested quantity ({requested_quantity}) exceeds available quantity "
                f"({available_quantity}) for unit {unit_id}"
            ),
            conflicting_resource={
                "unit_id": unit_id,
                "requested_quantity": requested_quantity,
                "available_quantity": available_quantity,
            },
            title="Capacity Exceeded",
            type_uri="https://example.com/problems/capacity-exceeded",
        )
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity


class ConcurrencyConflictError(ConflictError):
    """Exception when an optimistic-locked write presents a stale version."""

    code = "CONCURRENCY_CONFLICT"
    retryable = True

    def __init__(self, unit_id: str, expected_version: int, detail: Optional[str] = None):
        super().__init__(
            detail=detail or f"Inventory unit {unit_id} changed concurrently (expected version {expected_version})",
            conflicting_resource={"unit_id": unit_id, "expected_version": expected_version},
            title="Concurrency Conflict",
            type_uri="https://example.com/problems/concurrency-conflict",
        )
        self.unit_id = unit_id
        self.expected_version = expected_version


class DuplicateReservationError(ConflictError):
    """Exception when the user already holds an active reservation for the unit."""

    code = "DUPLICATE_RESERVATION"

    def __init__(self, user_id: str, unit_id: str):
        super().__init__(
            detail=f"User {user_id} already has an active reservation for unit {unit_id}",
            conflicting_resource={"user_id": user_id, "unit_id": unit_id},
            title="Duplicate Reservation",
            type_uri="https://example.com/problems/duplicate-reservation",
        )


class AlreadyProcessedError(ConflictError):
    """Exception when a finished reservation receives a repeat transition request."""

    code = "ALREADY_PROCESSED"

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            detail=f"Reservation is already '{current_status}'; cannot apply '{target_status}'",
            conflicting_resource={"current_status": current_status, "target_status": target_status},
            title="Already Processed",
            type_uri="https://example.com/problems/already-processed",
        )


class PaymentIncompleteError(ProblemDetailsException):
    """Exception when confirmation is requested before the payment settled."""

    code = "PAYMENT_INCOMPLETE"
    retryable = True

    def __init__(self, reservation_id: str, settlement_status: str):
        super().__init__(
            status_code=402,
            title="Payment Incomplete",
            detail=f"Payment for reservation {reservation_id} has not settled (status: {settlement_status})",
            type_uri="https://example.com/problems/payment-incomplete",
            extensions={"reservation_id": reservation_id, "settlement_status": settlement_status},
        )


class PaymentGatewayError(ProblemDetailsException):
    """Exception for payment provider failures, distinct from business-rule failures."""

    code = "PAYMENT_GATEWAY_ERROR"
    retryable = True

    def __init__(
        self,
        detail: str = "The payment provider could not process the request",
        operation: Optional[str] = None,
        provider_message: Optional[str] = None,
    ):
        extensions = {}
        if operation:
            extensions["operation"] = operation
        super().__init__(
            status_code=502,
            title="Payment Gateway Error",
            detail=detail,
            type_uri="https://example.com/problems/payment-gateway-error",
            extensions=extensions,
        )
        # Kept for logs only; never rendered to the caller
        self.provider_message = provider_message
        self.operation = operation


class RefundFailedError(PaymentGatewayError):
    """Exception when a refund fails during cancellation; inventory stays held."""

    code = "REFUND_FAILED"

    def __init__(self, reservation_id: str, provider_message: Optional[str] = None):
        super().__init__(
            detail=(
                f"Refund for reservation {reservation_id} failed; the reservation was not cancelled. "
                "Retry the cancellation or contact support."
            ),
            operation="refund",
            provider_message=provider_message,
        )
        self.problem_details["reservation_id"] = reservation_id


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path},
    )

    problem = InternalServerError(error_id=error_id, instance=str(request.url))

    return JSONResponse(
        status_code=problem.status_code,
        content=problem.problem_details,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Exception handler that reports request body validation failures as Problem Details.

    Args:
        request: FastAPI request object
        exc: Validation error raised while parsing the request

    Returns:
        JSONResponse: Problem Details formatted response
    """
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    problem = ValidationError(detail="The request data failed validation", instance=str(request.url))
    content = dict(problem.problem_details)
    content["errors"] = errors

    return JSONResponse(status_code=problem.status_code, content=content)
