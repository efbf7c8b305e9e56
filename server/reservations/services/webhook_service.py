"""Webhook service: applies payment provider events exactly once."""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, ProblemDetailsException, ValidationError
from ..models.reservation import Reservation
from ..models.webhook import WebhookEvent
from .payment_gateway import PaymentGateway
from .reservation_service import ReservationService

logger = logging.getLogger(__name__)

PROVIDER = "stripe"


class WebhookService:
    """
    Authoritative payment path.

    Every event is recorded before it is applied. Business rejections are
    recorded and acknowledged so the provider stops redelivering; unexpected
    failures are recorded and re-raised so the provider retries.
    """

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, reservations: ReservationService):
        self.db = db
        self.gateway = gateway
        self.reservations = reservations

    async def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify, record and apply one webhook delivery.

        Raises:
            ValidationError: If the signature or payload is invalid
        """
        event = self.gateway.construct_webhook_event(payload, signature)
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise ValidationError("Webhook event is missing its id or type")

        logger.info(
            "Payment webhook received",
            extra={"event_id": event_id, "event_type": event_type}
        )

        record = await self._get_record(event_id)
        if record and record.processed:
            await self.db.commit()
            logger.info(
                "Webhook event already processed (idempotent skip)",
                extra={"event_id": event_id, "event_type": event_type, "processed_at": str(record.processed_at)}
            )
            return {"received": True, "event_type": event_type, "already_processed": True}

        if record is None:
            await self._record_received(event_id, event_type, payload)

        try:
            await self._dispatch(event_type, event.get("data", {}).get("object", {}))
        except ProblemDetailsException as exc:
            logger.warning(
                "Webhook event rejected by business rules",
                extra={"event_id": event_id, "event_type": event_type, "code": exc.code, "error": exc.message}
            )
            await self._record_outcome(event_id, error=f"{exc.code}: {exc.message}")
            return {"received": True, "event_type": event_type, "already_processed": False, "error": exc.code}
        except Exception as exc:
            logger.error(
                "Webhook event processing failed",
                extra={"event_id": event_id, "event_type": event_type, "error": str(exc)}
            )
            await self.db.rollback()
            await self._record_outcome(event_id, error=str(exc), failed=True)
            raise

        await self._record_outcome(event_id)
        return {"received": True, "event_type": event_type, "already_processed": False}

    async def _dispatch(self, event_type: str, payload: Dict[str, Any]) -> None:
        if event_type == "payment_intent.succeeded":
            reservation_id = await self._resolve_reservation(payload)
            await self.reservations.mark_payment_succeeded(reservation_id)

        elif event_type == "payment_intent.payment_failed":
            reservation_id = await self._resolve_reservation(payload)
            error = payload.get("last_payment_error") or {}
            reason = error.get("message") or "Payment failed"
            await self.reservations.mark_payment_failed(reservation_id, reason)

        elif event_type == "charge.refunded":
            logger.info(
                "Charge refunded",
                extra={
                    "charge_id": payload.get("id"),
                    "payment_intent": payload.get("payment_intent"),
                    "amount_refunded": payload.get("amount_refunded"),
                }
            )

        else:
            logger.info("Unhandled webhook event type", extra={"event_type": event_type})

    async def _resolve_reservation(self, intent: Dict[str, Any]) -> UUID:
        """Find the reservation an intent belongs to, by metadata first and provider reference second."""
        metadata = intent.get("metadata") or {}
        raw_id = metadata.get("reservation_id")
        if raw_id:
            try:
                return UUID(raw_id)
            except ValueError:
                raise ValidationError(f"Malformed reservation_id in payment metadata: {raw_id!r}")

        intent_id = intent.get("id")
        if intent_id:
            result = await self.db.execute(
                select(Reservation.id).where(Reservation.payment_reference == intent_id)
            )
            reservation_id = result.scalar_one_or_none()
            if reservation_id:
                return reservation_id

        raise NotFoundError(resource_type="reservation", detail=f"No reservation matches payment intent {intent_id}")

    async def _get_record(self, event_id: str) -> Optional[WebhookEvent]:
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.provider == PROVIDER, WebhookEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _record_received(self, event_id: str, event_type: str, payload: bytes) -> None:
        self.db.add(WebhookEvent(
            provider=PROVIDER,
            event_id=event_id,
            event_type=event_type,
            payload=payload.decode("utf-8", errors="replace"),
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event already recorded it
            await self.db.rollback()

    async def _record_outcome(self, event_id: str, error: Optional[str] = None, failed: bool = False) -> None:
        record = await self._get_record(event_id)
        if record is None:
            return
        if failed:
            record.mark_failed(error)
        else:
            record.mark_processed(error)
        await self.db.commit()
