"""Delivery ledger listing, used to find failed slots for manual replay."""

import uuid
from datetime import date, datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel

from app.dependencies import Ledger
from app.models.delivery_log import DeliverySlot, DeliveryStatus

router = APIRouter()


class DeliveryResponse(BaseModel):
    """Response model for a ledger entry."""

    id: uuid.UUID
    subscriber_id: uuid.UUID
    slot: DeliverySlot
    target_date: date
    scheduled_at: datetime
    status: DeliveryStatus
    error: str | None
    sent_at: datetime | None

    model_config = {"from_attributes": True}


@router.get("/deliveries", response_model=list[DeliveryResponse])
async def list_deliveries(
    ledger: Ledger,
    status: DeliveryStatus | None = Query(default=None, description="Filter by status"),
    target_date: date | None = Query(default=None, description="Filter by target date"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[DeliveryResponse]:
    """
    List ledger entries, newest reservation first.

    Failed entries are never retried automatically; this listing is the
    starting point for replaying them by hand.
    """
    entries = await ledger.list_entries(
        status=status, target_date=target_date, limit=limit, offset=offset
    )
    return [DeliveryResponse.model_validate(entry) for entry in entries]
