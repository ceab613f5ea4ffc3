"""SQLAlchemy-backed delivery ledger.

reserve() is check-then-insert. The check avoids a failing insert in the
common case; the unique `dedupe_key` constraint settles real races, so two
schedulers (or two overlapping ticks) can never both hold a reservation.
"""

import uuid
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import AsyncSessionLocal
from app.core.datetime_utils import utc_now
from app.core.logging import get_logger
from app.models.delivery_log import DeliveryLog, DeliverySlot, DeliveryStatus, build_dedupe_key
from app.stores.base import DeliveryLedger, ReservationResult

logger = get_logger(__name__)

TERMINAL_STATUSES = (DeliveryStatus.SENT, DeliveryStatus.FAILED)


class SQLDeliveryLedger(DeliveryLedger):
    """Delivery reservations in the `delivery_logs` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal

    async def reserve(
        self,
        subscriber_id: uuid.UUID,
        slot: DeliverySlot,
        target_date: date,
    ) -> ReservationResult:
        dedupe_key = build_dedupe_key(subscriber_id, slot, target_date)

        async with self._session_factory() as db:
            if await self._find_existing(db, dedupe_key) is not None:
                logger.bind(dedupe_key=dedupe_key).debug("delivery_already_reserved")
                return ReservationResult(reserved=False)

            entry = DeliveryLog(
                subscriber_id=subscriber_id,
                slot=slot,
                target_date=target_date,
                scheduled_at=utc_now(),
                status=DeliveryStatus.RESERVED,
                dedupe_key=dedupe_key,
            )
            db.add(entry)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.bind(dedupe_key=dedupe_key).info("delivery_reservation_conflict")
                return ReservationResult(reserved=False)

        logger.bind(dedupe_key=dedupe_key, entry_id=str(entry.id)).debug("delivery_reserved")
        return ReservationResult(reserved=True, entry_id=entry.id)

    async def mark_status(
        self,
        entry_id: uuid.UUID,
        status: DeliveryStatus,
        error: str | None = None,
    ) -> bool:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"mark_status expects SENT or FAILED, got {status.value}")

        values: dict = {"status": status, "error": error}
        if status == DeliveryStatus.SENT:
            values["sent_at"] = utc_now()

        async with self._session_factory() as db:
            result = await db.execute(
                update(DeliveryLog)
                .where(
                    DeliveryLog.id == entry_id,
                    DeliveryLog.status == DeliveryStatus.RESERVED,
                )
                .values(**values)
            )
            await db.commit()

        if not result.rowcount:
            logger.bind(entry_id=str(entry_id), status=status.value).warning(
                "delivery_status_already_final"
            )
            return False
        return True

    async def list_entries(
        self,
        status: DeliveryStatus | None = None,
        target_date: date | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DeliveryLog]:
        query = select(DeliveryLog).order_by(DeliveryLog.scheduled_at.desc())
        if status is not None:
            query = query.where(DeliveryLog.status == status)
        if target_date is not None:
            query = query.where(DeliveryLog.target_date == target_date)

        async with self._session_factory() as db:
            result = await db.execute(query.offset(offset).limit(limit))
            return list(result.scalars().all())

    async def _find_existing(self, db: AsyncSession, dedupe_key: str) -> uuid.UUID | None:
        result = await db.execute(
            select(DeliveryLog.id).where(DeliveryLog.dedupe_key == dedupe_key)
        )
        return result.scalar_one_or_none()
