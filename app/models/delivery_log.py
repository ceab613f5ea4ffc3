"""Delivery ledger entries: one per (subscriber, slot, target date)."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, Enum, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class DeliverySlot(str, enum.Enum):
    """One of the two daily delivery occasions."""

    MORNING = "MORNING"
    EVENING = "EVENING"


class DeliveryStatus(str, enum.Enum):
    """Lifecycle of a ledger entry: RESERVED, then exactly one terminal state."""

    RESERVED = "RESERVED"
    SENT = "SENT"
    FAILED = "FAILED"


def build_dedupe_key(subscriber_id: uuid.UUID | str, slot: DeliverySlot, target_date: date) -> str:
    """Deterministic reservation key: `subscriberId:slot:targetDate`."""
    return f"{subscriber_id}:{slot.value}:{target_date.isoformat()}"


class DeliveryLog(Base):
    """Tracks delivery attempts per subscriber, slot and local target date.

    The unique `dedupe_key` is the only thing preventing duplicate sends:
    whoever inserts the row owns the attempt. A FAILED row still blocks the
    same slot/day, so failures are never retried automatically.
    """

    __tablename__ = "delivery_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscriber_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscribers.id", ondelete="CASCADE"), index=True
    )
    slot: Mapped[DeliverySlot] = mapped_column(
        Enum(DeliverySlot, name="delivery_slot", native_enum=False, length=16)
    )
    target_date: Mapped[date] = mapped_column(Date, index=True)
    scheduled_at: Mapped[datetime] = mapped_column()
    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status", native_enum=False, length=16),
        default=DeliveryStatus.RESERVED,
        index=True,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(default=None)
    dedupe_key: Mapped[str] = mapped_column(String(128), unique=True)

    def __repr__(self) -> str:
        return f"<DeliveryLog {self.dedupe_key} {self.status.value}>"
