"""Inventory unit and ledger entry model definitions."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .resource import Resource


class UnitKind(str, Enum):
    """Capacity dimension of a resource."""
    TIME_SLOT = "time_slot"
    STOCK = "stock"


# Products carry a single stock unit under this key
STOCK_SLOT_KEY = "stock"


class InventoryUnit(Base):
    """
    Consumable capacity for a resource: a time slot's seats or a product's stock.

    ``reserved`` and ``version`` are written only by the inventory ledger's
    compare-and-swap update.
    """

    __tablename__ = "inventory_units"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Foreign key to resource
    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    slot_key: Mapped[str] = mapped_column(String(64), nullable=False)

    # Slot window (time slots only)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Capacity tracking
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Host-controlled switch; a closed unit is unavailable regardless of capacity
    is_open: Mapped[bool] = mapped_column(nullable=False, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint("resource_id", "slot_key", name="uq_inventory_unit_resource_slot"),
        CheckConstraint("capacity >= 0", name="ck_inventory_unit_capacity_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_inventory_unit_reserved_non_negative"),
        CheckConstraint("reserved <= capacity", name="ck_inventory_unit_reserved_lte_capacity"),
        CheckConstraint("version >= 1", name="ck_inventory_unit_version_positive"),
        CheckConstraint("kind IN ('time_slot', 'stock')", name="ck_inventory_unit_kind_valid"),
        CheckConstraint(
            "starts_at IS NULL OR ends_at IS NULL OR ends_at > starts_at",
            name="ck_inventory_unit_window_ordered"
        ),
    )

    # Relationships
    resource: Mapped["Resource"] = relationship("Resource", back_populates="units")

    @property
    def available(self) -> int:
        return max(self.capacity - self.reserved, 0)

    def __repr__(self) -> str:
        return (
            f"<InventoryUnit(id={self.id}, resource_id={self.resource_id}, slot_key='{self.slot_key}', "
            f"reserved={self.reserved}/{self.capacity}, version={self.version})>"
        )


class LedgerEntry(Base):
    """Append-only record of a committed ledger version transition."""

    __tablename__ = "ledger_entries"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    unit_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("inventory_units.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    reservation_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Positive for holds, negative for releases
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    # Before and after values for audit trail
    reserved_before: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_after: Mapped[int] = mapped_column(Integer, nullable=False)
    version_before: Mapped[int] = mapped_column(Integer, nullable=False)
    version_after: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        index=True  # Index for audit queries
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("delta != 0", name="ck_ledger_entry_delta_nonzero"),
        CheckConstraint("length(reason) > 0", name="ck_ledger_entry_reason_not_empty"),
        CheckConstraint("reserved_before >= 0", name="ck_ledger_entry_reserved_before_non_negative"),
        CheckConstraint("reserved_after >= 0", name="ck_ledger_entry_reserved_after_non_negative"),
        CheckConstraint(
            "reserved_after = reserved_before + delta",
            name="ck_ledger_entry_delta_consistency"
        ),
        CheckConstraint(
            "version_after = version_before + 1",
            name="ck_ledger_entry_version_step"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(id={self.id}, unit_id={self.unit_id}, delta={self.delta}, "
            f"version={self.version_before}->{self.version_after}, created_at={self.created_at})>"
        )
