"""Resource model definition (experiences and products)."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base
from ..domain.money import Money

if TYPE_CHECKING:
    from .inventory import InventoryUnit


class ResourceKind(str, Enum):
    """What is being sold."""
    EXPERIENCE = "experience"
    PRODUCT = "product"


class ResourceStatus(str, Enum):
    """Resource status enumeration."""
    DRAFT = "draft"
    ACTIVE = "active"
    SOLD_OUT = "sold_out"
    ARCHIVED = "archived"


class Resource(Base):
    """A bookable experience or a stocked product owned by a host or seller."""

    __tablename__ = "resources"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Owner (host for experiences, seller for products)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Price per seat or unit (stored as minor units, e.g., centavos)
    unit_price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MXN")

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ResourceStatus.ACTIVE.value,
        index=True
    )

    # Bumped on every capacity mutation of any of its units
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

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
        CheckConstraint("unit_price_amount >= 0", name="ck_resource_price_non_negative"),
        CheckConstraint("length(unit_price_currency) = 3", name="ck_resource_price_currency_length"),
        CheckConstraint("length(title) > 0", name="ck_resource_title_not_empty"),
        CheckConstraint("version >= 1", name="ck_resource_version_positive"),
        CheckConstraint("kind IN ('experience', 'product')", name="ck_resource_kind_valid"),
    )

    # Relationships
    units: Mapped[list["InventoryUnit"]] = relationship(
        "InventoryUnit",
        back_populates="resource",
        cascade="all, delete-orphan"
    )

    @property
    def unit_price(self) -> Money:
        return Money(self.unit_price_amount, self.unit_price_currency)

    @property
    def is_active(self) -> bool:
        return self.status == ResourceStatus.ACTIVE.value

    def is_owned_by(self, user_id: str) -> bool:
        return self.owner_id == user_id

    def __repr__(self) -> str:
        return (
            f"<Resource(id={self.id}, kind={self.kind}, title='{self.title}', "
            f"status={self.status}, version={self.version})>"
        )
