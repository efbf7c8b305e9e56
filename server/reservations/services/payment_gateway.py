"""Payment gateway adapter: Stripe with a mock fallback."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import stripe

from ..core.config import Settings
from ..core.exceptions import PaymentGatewayError, ValidationError
from ..core.observability import metrics_collector

logger = logging.getLogger(__name__)

# Stripe error code for a refund of a charge that has no refundable amount left
ALREADY_REFUNDED_CODE = "charge_already_refunded"


class SettlementStatus(str, Enum):
    """The provider's view of whether funds have cleared."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def from_provider(cls, provider_status: str) -> "SettlementStatus":
        if provider_status == "succeeded":
            return cls.SUCCEEDED
        if provider_status == "canceled":
            return cls.FAILED
        return cls.PENDING


@dataclass(frozen=True)
class PaymentIntent:
    """Result of creating a payment intent."""
    provider_reference: str
    client_secret: str


class PaymentGateway(ABC):
    """
    Provider-neutral payment operations.

    Implementations never retry internally; the reservation service decides
    what to do with a failure.
    """

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        description: str,
        metadata: Dict[str, str],
    ) -> PaymentIntent:
        """Create a payment intent for ``amount`` minor units."""

    @abstractmethod
    async def get_status(self, provider_reference: str) -> SettlementStatus:
        """Look up settlement status of an intent."""

    @abstractmethod
    async def refund(
        self,
        provider_reference: str,
        amount: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """
        Refund an intent, fully when ``amount`` is omitted.

        Repeating a refund with the same ``idempotency_key``, or refunding a charge
        the provider already refunded, counts as success. Returns False if the
        provider refused.
        """

    @abstractmethod
    async def cancel(self, provider_reference: str) -> bool:
        """Cancel an unsettled intent. Returns False if the provider refused."""

    @abstractmethod
    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify and parse an inbound webhook payload."""


def _create_refund(**params: Any) -> Optional[Any]:
    """Create a refund; ``None`` when the provider reports the charge as already refunded."""
    try:
        return stripe.Refund.create(**params)
    except stripe.InvalidRequestError as exc:
        if exc.code == ALREADY_REFUNDED_CODE:
            return None
        raise


class StripePaymentGateway(PaymentGateway):
    """Stripe-backed gateway; SDK calls run off the event loop under a timeout."""

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, timeout_seconds: float = 5.0):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, func: Callable[..., Any], **kwargs) -> Any:
        with metrics_collector.time_gateway_call(operation):
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(func, api_key=self._api_key, **kwargs),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "Payment provider call timed out",
                    extra={"operation": operation, "timeout_seconds": self.timeout_seconds}
                )
                raise PaymentGatewayError(
                    detail="The payment provider did not respond in time",
                    operation=operation,
                    provider_message="timeout",
                )
            except stripe.StripeError as exc:
                logger.error(
                    "Payment provider call failed",
                    extra={"operation": operation, "error": str(exc)}
                )
                raise PaymentGatewayError(operation=operation, provider_message=str(exc))

    async def create_intent(
        self,
        amount: int,
        currency: str,
        description: str,
        metadata: Dict[str, str],
    ) -> PaymentIntent:
        intent = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            description=description,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        logger.info(
            "Created payment intent",
            extra={"payment_intent_id": intent.id, "amount": amount, "currency": currency}
        )
        return PaymentIntent(provider_reference=intent.id, client_secret=intent.client_secret)

    async def get_status(self, provider_reference: str) -> SettlementStatus:
        intent = await self._call("get_status", stripe.PaymentIntent.retrieve, id=provider_reference)
        return SettlementStatus.from_provider(intent.status)

    async def refund(
        self,
        provider_reference: str,
        amount: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        kwargs: Dict[str, Any] = {"payment_intent": provider_reference}
        if amount is not None:
            kwargs["amount"] = amount
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key
        try:
            refund = await self._call("refund", _create_refund, **kwargs)
        except PaymentGatewayError as exc:
            if exc.provider_message == "timeout":
                raise
            return False

        if refund is None:
            logger.info(
                "Charge was already refunded",
                extra={"payment_intent_id": provider_reference, "idempotency_key": idempotency_key}
            )
        return True

    async def cancel(self, provider_reference: str) -> bool:
        try:
            await self._call("cancel", stripe.PaymentIntent.cancel, intent=provider_reference)
        except PaymentGatewayError as exc:
            if exc.provider_message == "timeout":
                raise
            return False
        return True

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self._webhook_secret:
            raise ValidationError("Webhook signing secret is not configured")
        if not signature:
            raise ValidationError("Missing webhook signature")

        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid webhook signature", extra={"error": str(exc)})
            raise ValidationError("Invalid webhook signature")
        except ValueError as exc:
            raise ValidationError(f"Invalid webhook payload: {exc}")

        return json.loads(payload)


class MockPaymentGateway(PaymentGateway):
    """
    Stand-in used when no provider credentials are configured.

    Identifiers are prefixed ``mock_`` and every intent is immediately settled.
    """

    async def create_intent(
        self,
        amount: int,
        currency: str,
        description: str,
        metadata: Dict[str, str],
    ) -> PaymentIntent:
        with metrics_collector.time_gateway_call("create_intent"):
            reference = f"mock_pi_{uuid4().hex}"
        logger.warning(
            "Payment provider not configured - returning mock payment intent",
            extra={"payment_intent_id": reference, "amount": amount, "currency": currency}
        )
        return PaymentIntent(provider_reference=reference, client_secret=f"{reference}_secret_mock")

    async def get_status(self, provider_reference: str) -> SettlementStatus:
        return SettlementStatus.SUCCEEDED

    async def refund(
        self,
        provider_reference: str,
        amount: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        return True

    async def cancel(self, provider_reference: str) -> bool:
        return True

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise ValidationError(f"Invalid webhook payload: {exc}")
        if not isinstance(event, dict):
            raise ValidationError("Webhook payload must be a JSON object")
        return event


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    """Choose the gateway implementation from settings."""
    if settings.payments_enabled:
        webhook_secret = (
            settings.stripe_webhook_secret.get_secret_value()
            if settings.stripe_webhook_secret
            else None
        )
        return StripePaymentGateway(
            api_key=settings.stripe_secret_key.get_secret_value(),
            webhook_secret=webhook_secret,
            timeout_seconds=settings.payment_timeout_seconds,
        )

    logger.warning("Stripe secret key not configured - payment gateway will operate in mock mode")
    return MockPaymentGateway()
