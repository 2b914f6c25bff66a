"""Provider webhook deliveries kept for replay detection."""
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PSPWebhookEvent(Base):
    """One webhook delivery from a payment provider."""

    __tablename__ = "psp_webhook_events"
    __table_args__ = (
        UniqueConstraint(
            "provider",
            "event_id",
            name="uq_psp_webhook_events_provider_event_id",
        ),
        Index("ix_psp_webhook_events_received", "received_at"),
        Index("ix_psp_webhook_events_kind", "kind"),
    )

    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(100), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    raw_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
