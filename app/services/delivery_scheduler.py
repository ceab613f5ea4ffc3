"""Minute-by-minute delivery of morning/evening notes in each subscriber's timezone.

One tick:
1. load active subscribers with at least one slot time,
2. compare their local "HH:MM" against morning_time / evening_time,
3. reserve the (subscriber, slot, date) triple in the ledger,
4. only the reservation holder generates content and sends it,
5. mark the ledger entry SENT or FAILED. Failures are not retried.

Matching is exact string equality on the local clock. A tick missed while
the process is down skips that slot for the day.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime

from app.config import get_config
from app.core.datetime_utils import (
    aware_utc_now,
    format_hhmm,
    local_date,
    local_now,
    local_tomorrow,
)
from app.core.logging import get_logger
from app.models.delivery_log import DeliverySlot, DeliveryStatus
from app.models.subscriber import Subscriber
from app.services.content import ContentMode, ContentProvider, get_content_provider
from app.services.dispatcher import MessageDispatcher
from app.stores.base import DeliveryLedger, SubscriberStore

logger = get_logger(__name__)


@dataclass
class DueDelivery:
    """A slot whose time matches the subscriber's local clock right now."""

    slot: DeliverySlot
    target_date: date
    mode: ContentMode
    timezone: str


@dataclass
class TickResult:
    """Counters for one scheduler tick."""

    evaluated: int = 0
    matched: int = 0
    reserved: int = 0
    skipped: int = 0  # matched, but another run already holds the reservation
    sent: int = 0
    failed: int = 0
    errors: int = 0  # store errors before or after the delivery attempt

    def as_dict(self) -> dict[str, int]:
        return {
            "evaluated": self.evaluated,
            "matched": self.matched,
            "reserved": self.reserved,
            "skipped": self.skipped,
            "sent": self.sent,
            "failed": self.failed,
            "errors": self.errors,
        }


def _describe_error(error: BaseException, timeout: float | None = None) -> str:
    if isinstance(error, TimeoutError):
        return f"Timed out after {timeout}s" if timeout else "Timed out"
    return str(error) or type(error).__name__


class DeliveryScheduler:
    """Evaluates subscribers and drives reserve -> generate -> send -> record."""

    def __init__(
        self,
        subscribers: SubscriberStore,
        ledger: DeliveryLedger,
        content_provider: ContentProvider,
        dispatcher: MessageDispatcher,
        default_timezone: str,
        max_concurrency: int = 10,
        content_timeout_seconds: float = 10.0,
        dispatch_timeout_seconds: float = 5.0,
    ) -> None:
        self._subscribers = subscribers
        self._ledger = ledger
        self._content = content_provider
        self._dispatcher = dispatcher
        self.default_timezone = default_timezone
        self.max_concurrency = max(1, max_concurrency)
        self.content_timeout = content_timeout_seconds
        self.dispatch_timeout = dispatch_timeout_seconds

    async def tick(self, now: datetime | None = None) -> TickResult:
        """Run one evaluation pass over all eligible subscribers.

        Args:
            now: Instant to evaluate (aware, or naive UTC). Defaults to the clock.

        Returns:
            TickResult with per-outcome counters
        """
        now = now or aware_utc_now()
        subscribers = await self._subscribers.list_active_eligible()
        result = TickResult(evaluated=len(subscribers))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(subscriber: Subscriber) -> None:
            async with semaphore:
                try:
                    await self._process_subscriber(subscriber, now, result)
                except Exception as e:
                    result.errors += 1
                    logger.bind(
                        subscriber_id=str(subscriber.id),
                        error=str(e),
                    ).error("delivery_subscriber_failed")

        await asyncio.gather(*(_guarded(s) for s in subscribers))

        if result.matched:
            logger.bind(**result.as_dict()).info("delivery_tick_completed")
        else:
            logger.bind(evaluated=result.evaluated).debug("delivery_tick_idle")
        return result

    def due_deliveries(self, subscriber: Subscriber, now: datetime) -> list[DueDelivery]:
        """Slots whose configured time equals the subscriber's local HH:MM at `now`.

        The morning note is about local today; the evening note previews
        local tomorrow.
        """
        local = local_now(subscriber.timezone, self.default_timezone, now)
        hhmm = format_hhmm(local)
        tz_name = str(local.tzinfo)

        due = []
        if subscriber.morning_time and subscriber.morning_time == hhmm:
            due.append(
                DueDelivery(DeliverySlot.MORNING, local_date(local), ContentMode.TODAY, tz_name)
            )
        if subscriber.evening_time and subscriber.evening_time == hhmm:
            due.append(
                DueDelivery(
                    DeliverySlot.EVENING, local_tomorrow(local), ContentMode.TOMORROW, tz_name
                )
            )
        return due

    async def _process_subscriber(
        self,
        subscriber: Subscriber,
        now: datetime,
        result: TickResult,
    ) -> None:
        for due in self.due_deliveries(subscriber, now):
            result.matched += 1
            try:
                await self._deliver(subscriber, due, result)
            except Exception as e:
                result.errors += 1
                logger.bind(
                    subscriber_id=str(subscriber.id),
                    slot=due.slot.value,
                    error=str(e),
                ).error("delivery_slot_failed")

    async def _deliver(self, subscriber: Subscriber, due: DueDelivery, result: TickResult) -> None:
        log = logger.bind(
            subscriber_id=str(subscriber.id),
            slot=due.slot.value,
            target_date=due.target_date.isoformat(),
            timezone=due.timezone,
        )

        # Claim the slot before any expensive work
        reservation = await self._ledger.reserve(subscriber.id, due.slot, due.target_date)
        if not reservation.reserved or reservation.entry_id is None:
            result.skipped += 1
            log.debug("delivery_already_handled")
            return
        result.reserved += 1

        stage, timeout = "content", self.content_timeout
        try:
            text = await asyncio.wait_for(
                self._content.generate(due.target_date, due.timezone, due.mode),
                timeout=self.content_timeout,
            )
            stage, timeout = "dispatch", self.dispatch_timeout
            await asyncio.wait_for(
                self._dispatcher.send(subscriber.telegram_chat_id, text),
                timeout=self.dispatch_timeout,
            )
        except Exception as e:
            error_text = f"{stage}: {_describe_error(e, timeout)}"
            await self._ledger.mark_status(reservation.entry_id, DeliveryStatus.FAILED, error_text)
            result.failed += 1
            log.bind(entry_id=str(reservation.entry_id), error=error_text).error("delivery_failed")
            return

        await self._ledger.mark_status(reservation.entry_id, DeliveryStatus.SENT)
        result.sent += 1
        log.bind(entry_id=str(reservation.entry_id)).info("delivery_sent")


def build_delivery_scheduler() -> DeliveryScheduler:
    """Wire the scheduler with the SQL stores and configured collaborators."""
    from app.services.telegram_service import get_telegram_dispatcher
    from app.stores.delivery_ledger import SQLDeliveryLedger
    from app.stores.subscribers import SQLSubscriberStore

    config = get_config()
    return DeliveryScheduler(
        subscribers=SQLSubscriberStore(),
        ledger=SQLDeliveryLedger(),
        content_provider=get_content_provider(),
        dispatcher=get_telegram_dispatcher(),
        default_timezone=config.settings.default_timezone,
        max_concurrency=config.scheduler.max_concurrency,
        content_timeout_seconds=config.scheduler.content_timeout_seconds,
        dispatch_timeout_seconds=config.scheduler.dispatch_timeout_seconds,
    )
