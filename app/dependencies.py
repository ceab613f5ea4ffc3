from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.database import get_db
from app.stores.base import DeliveryLedger
from app.stores.delivery_ledger import SQLDeliveryLedger

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_delivery_ledger() -> DeliveryLedger:
    """Ledger backed by the application session factory."""
    return SQLDeliveryLedger()


Ledger = Annotated[DeliveryLedger, Depends(get_delivery_ledger)]
