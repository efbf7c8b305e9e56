"""Models module exporting all database models."""

from .inventory import STOCK_SLOT_KEY, InventoryUnit, LedgerEntry, UnitKind
from .reservation import CancelledBy, Reservation, ReservationKind
from .resource import Resource, ResourceKind, ResourceStatus
from .webhook import WebhookEvent

__all__ = [
    # Catalog entities
    "Resource",
    "ResourceKind",
    "ResourceStatus",

    # Inventory entities
    "InventoryUnit",
    "UnitKind",
    "STOCK_SLOT_KEY",
    "LedgerEntry",

    # Reservation entity
    "Reservation",
    "ReservationKind",
    "CancelledBy",

    # Webhook entity
    "WebhookEvent",
]
