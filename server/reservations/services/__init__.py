"""Service layer package."""

from .catalog_service import CatalogService
from .ledger_service import InventoryLedger
from .payment_gateway import (
    MockPaymentGateway,
    PaymentGateway,
    PaymentIntent,
    SettlementStatus,
    StripePaymentGateway,
    build_payment_gateway,
)
from .reservation_service import ReconciliationReport, ReservationResult, ReservationService, RetryPolicy
from .webhook_service import WebhookService

__all__ = [
    "CatalogService",
    "InventoryLedger",
    "MockPaymentGateway",
    "PaymentGateway",
    "PaymentIntent",
    "ReconciliationReport",
    "ReservationResult",
    "ReservationService",
    "RetryPolicy",
    "SettlementStatus",
    "StripePaymentGateway",
    "WebhookService",
    "build_payment_gateway",
]
