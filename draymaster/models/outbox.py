from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base, new_id, utcnow


class OutboxEvent(Base):
    """
    Event written in the same transaction as the mutation that caused it.

    Rows with published_at NULL have not been handed to the dispatcher yet.
    """

    __tablename__ = "outbox_event"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    event_type: Mapped[str] = mapped_column(String(50))
    entity_type: Mapped[str] = mapped_column(String(30))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(30))
    new_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_outbox_unpublished", "published_at", "created_at"),
    )
