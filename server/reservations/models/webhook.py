"""Webhook event model definition."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class WebhookEvent(Base):
    """Provider event received on the webhook; guards against redelivery."""

    __tablename__ = "webhook_events"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="stripe")
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Raw payload as received (JSON string)
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    # Processing outcome
    processed: Mapped[bool] = mapped_column(nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    received_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("length(event_id) > 0", name="ck_webhook_event_id_not_empty"),
        UniqueConstraint("provider", "event_id", name="uq_webhook_event_provider_event"),
    )

    def mark_processed(self, error: str | None = None) -> None:
        """Record the event as handled; business rejections are handled too."""
        self.processed = True
        self.processed_at = datetime.utcnow()
        self.last_error = error

    def mark_failed(self, error: str) -> None:
        """Record an unexpected failure so a redelivery is processed again."""
        self.processed = False
        self.last_error = error

    def __repr__(self) -> str:
        return (
            f"<WebhookEvent(id={self.id}, provider='{self.provider}', "
            f"event_id='{self.event_id}', event_type='{self.event_type}', processed={self.processed})>"
        )
