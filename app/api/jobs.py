"""Job monitoring API endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import select

from app.core.scheduler import DELIVERY_TICK_JOB_ID, get_job_schedules
from app.dependencies import AppSettings, DBSession
from app.models.job_run import JobRun

router = APIRouter()


class ScheduleResponse(BaseModel):
    """Response model for a job schedule."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


class JobRunResponse(BaseModel):
    """Response model for a job run."""

    id: str
    job_id: str
    scheduled_at: datetime
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    outcome: str
    error: str | None

    model_config = {"from_attributes": True}


class TickResponse(BaseModel):
    """Counters from a manually triggered delivery tick."""

    evaluated: int
    matched: int
    reserved: int
    skipped: int
    sent: int
    failed: int
    errors: int


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """
    List all registered job schedules.

    Returns schedule information including next/last fire times.
    """
    schedules = await get_job_schedules()
    return [ScheduleResponse(**s) for s in schedules]


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    job_id: str | None = Query(default=None, description="Filter by job ID"),
    outcome: str | None = Query(default=None, description="Filter by outcome, e.g. error"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """
    List job execution history.

    Returns recent job runs, newest first.
    """
    query = select(JobRun).order_by(JobRun.scheduled_at.desc())

    if job_id:
        query = query.where(JobRun.job_id == job_id)
    if outcome:
        query = query.where(JobRun.outcome == outcome)

    result = await db.execute(query.offset(offset).limit(limit))
    return [JobRunResponse.model_validate(run) for run in result.scalars().all()]


@router.post(f"/jobs/{DELIVERY_TICK_JOB_ID}/run", response_model=TickResponse)
async def run_delivery_tick(settings: AppSettings) -> TickResponse:
    """
    Run one delivery tick now.

    Safe to call at any time: slots already handled are skipped by the ledger.
    Only available in debug mode.
    """
    from app.services.delivery_scheduler import build_delivery_scheduler

    if not settings.debug:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )

    result = await build_delivery_scheduler().tick()
    return TickResponse(**result.as_dict())
