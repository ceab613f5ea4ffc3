"""SQLAlchemy-backed subscriber store."""

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import AsyncSessionLocal
from app.core.logging import get_logger
from app.models.subscriber import Subscriber
from app.stores.base import SubscriberProfile, SubscriberStore

logger = get_logger(__name__)


class SQLSubscriberStore(SubscriberStore):
    """Subscriber profiles in the `subscribers` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal

    async def find_by_id(self, user_id: str) -> Subscriber | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Subscriber).where(Subscriber.telegram_user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def upsert(self, profile: SubscriberProfile) -> Subscriber:
        values = {
            "telegram_chat_id": profile.telegram_chat_id,
            "timezone": profile.timezone,
            "morning_time": profile.morning_time,
            "evening_time": profile.evening_time,
            "is_active": True,
        }
        if profile.lat is not None and profile.lon is not None:
            values["lat"] = profile.lat
            values["lon"] = profile.lon

        subscriber = await self._create_or_update(profile.telegram_user_id, values)
        logger.bind(
            user_id=profile.telegram_user_id,
            timezone=profile.timezone,
            morning_time=profile.morning_time,
            evening_time=profile.evening_time,
        ).info("subscriber_upserted")
        return subscriber

    async def set_active(self, user_id: str, active: bool) -> bool:
        return await self._update_fields(user_id, is_active=active)

    async def update_morning_time(self, user_id: str, value: str) -> bool:
        return await self._update_fields(user_id, morning_time=value)

    async def update_evening_time(self, user_id: str, value: str) -> bool:
        return await self._update_fields(user_id, evening_time=value)

    async def list_active_eligible(self) -> list[Subscriber]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Subscriber).where(
                    and_(
                        Subscriber.is_active.is_(True),
                        or_(
                            Subscriber.morning_time.is_not(None),
                            Subscriber.evening_time.is_not(None),
                        ),
                    )
                )
            )
            return list(result.scalars().all())

    async def save_timezone(self, user_id: str, chat_id: str, timezone: str) -> Subscriber:
        return await self._create_or_update(
            user_id,
            {"telegram_chat_id": chat_id, "timezone": timezone},
        )

    async def save_location(
        self,
        user_id: str,
        chat_id: str,
        lat: float,
        lon: float,
        timezone: str,
    ) -> Subscriber:
        return await self._create_or_update(
            user_id,
            {"telegram_chat_id": chat_id, "lat": lat, "lon": lon, "timezone": timezone},
        )

    async def _update_fields(self, user_id: str, **values: object) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(Subscriber).where(Subscriber.telegram_user_id == user_id).values(**values)
            )
            await db.commit()
            updated = bool(result.rowcount)

        if not updated:
            logger.bind(user_id=user_id, fields=list(values)).debug("subscriber_update_not_found")
        return updated

    async def _create_or_update(self, user_id: str, values: dict) -> Subscriber:
        """Insert a new profile or apply `values` to the existing one.

        A concurrent insert for the same user loses on the unique
        telegram_user_id and falls through to the update path.
        """
        for _ in range(2):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Subscriber).where(Subscriber.telegram_user_id == user_id)
                )
                subscriber = result.scalar_one_or_none()

                if subscriber is None:
                    subscriber = Subscriber(
                        telegram_user_id=user_id, **{"is_active": True, **values}
                    )
                    db.add(subscriber)
                else:
                    for key, value in values.items():
                        setattr(subscriber, key, value)

                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    logger.bind(user_id=user_id).warning("subscriber_insert_race")
                    continue

                await db.refresh(subscriber)
                return subscriber

        raise RuntimeError(f"Could not save subscriber {user_id}")
