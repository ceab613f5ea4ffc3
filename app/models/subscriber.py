"""Subscriber profile: delivery channel, timezone and daily slot times."""

import uuid

from sqlalchemy import Boolean, Float, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class Subscriber(Base, TimestampMixin):
    """A Telegram user who receives the morning/evening notes.

    Eligible for a slot only when `is_active` and that slot's time is set.
    Never hard-deleted; `is_active=False` pauses deliveries.
    """

    __tablename__ = "subscribers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    telegram_user_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    telegram_chat_id: Mapped[str] = mapped_column(String(32))
    timezone: Mapped[str] = mapped_column(String(64))
    morning_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    evening_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Subscriber {self.telegram_user_id}>"
