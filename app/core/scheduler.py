"""
APScheduler integration for FastAPI.

Runs the delivery tick in-process every minute. Schedules live in memory;
delivery idempotency comes from the ledger, so several processes running
the same schedule never send twice.

Jobs:
- Delivery tick: evaluates every subscriber's local time (every minute)
"""

import asyncio
from datetime import datetime
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from app.config import get_settings
from app.core.database import AsyncSessionLocal
from app.core.datetime_utils import to_naive_utc, utc_now
from app.core.logging import get_logger

logger = get_logger(__name__)

DELIVERY_TICK_JOB_ID = "delivery_tick"

# Global scheduler instance
scheduler: AsyncScheduler | None = None

# One tick at a time per process
_tick_lock = asyncio.Lock()


async def delivery_tick_job() -> None:
    """Delivery tick job - sends morning/evening notes that are due this minute."""
    from app.services.delivery_scheduler import build_delivery_scheduler

    if _tick_lock.locked():
        logger.warning("delivery_tick_overlap_skipped")
        return

    async with _tick_lock:
        try:
            result = await build_delivery_scheduler().tick()
        except Exception as e:
            logger.bind(error=str(e)).error("delivery_tick_job_failed")
            raise  # Re-raise so APScheduler records the failure

    if result.failed or result.errors:
        logger.bind(**result.as_dict()).warning("delivery_tick_job_completed_with_failures")


async def _record_job_result(
    job_id: str,
    scheduled_at: datetime,
    started_at: datetime,
    outcome: JobOutcome,
    error: str | None = None,
) -> None:
    """Record job execution result to database."""
    from app.models.job_run import JobRun

    async with AsyncSessionLocal() as db:
        job_run = JobRun(
            job_id=job_id,
            scheduled_at=to_naive_utc(scheduled_at),
            started_at=to_naive_utc(started_at),
            finished_at=utc_now(),
            outcome=outcome.name,
            error=error,
        )
        db.add(job_run)
        await db.commit()


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler with in-memory schedules."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    # Subscribe to job events for history tracking
    scheduler.subscribe(_on_job_completed)

    await scheduler.add_schedule(
        delivery_tick_job,
        CronTrigger(minute="*"),
        id=DELIVERY_TICK_JOB_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=[DELIVERY_TICK_JOB_ID]).info("scheduler_started")
    return scheduler


def _describe_job_error(event: JobReleased) -> str | None:
    """Error text for a failed job ("Type: message"), None otherwise."""
    if event.outcome != JobOutcome.error:
        return None
    exc_type = getattr(event, "exception_type", None)
    exc_message = getattr(event, "exception_message", None)
    if exc_type and exc_message:
        return f"{exc_type}: {exc_message}"
    return exc_type or exc_message


async def _on_job_completed(event: Any) -> None:
    """Record every released job into job_runs."""
    if isinstance(event, JobReleased):
        try:
            scheduled_at = getattr(event, "scheduled_fire_time", None) or utc_now()
            started_at = getattr(event, "started_at", None) or utc_now()
            await _record_job_result(
                job_id=event.schedule_id or "unknown",
                scheduled_at=scheduled_at,
                started_at=started_at,
                outcome=event.outcome,
                error=_describe_job_error(event),
            )
        except Exception as e:
            logger.bind(error=str(e)).error("failed_to_record_job_result")


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
