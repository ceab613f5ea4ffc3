"""Resolve an IANA timezone from coordinates via an external HTTP service."""

from abc import ABC, abstractmethod

import httpx

from app.config import get_settings
from app.core.datetime_utils import is_valid_timezone
from app.core.logging import get_logger

logger = get_logger(__name__)


class TimezoneLookup(ABC):
    """Maps a geolocation to a timezone name."""

    @abstractmethod
    async def lookup(self, lat: float, lon: float) -> str | None:
        """Return an IANA timezone, or None when it cannot be determined."""
        pass


class HTTPTimezoneLookup(TimezoneLookup):
    """
    Queries a coordinate-to-timezone endpoint (timeapi.io compatible).

    Never raises: any network error, bad status, or unknown zone yields None
    and the caller keeps its fallback timezone.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 6.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout_seconds
        self._transport = transport

    async def lookup(self, lat: float, lon: float) -> str | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.url, params={"latitude": lat, "longitude": lon})
            if resp.status_code != 200:
                logger.bind(status=resp.status_code).warning("timezone_lookup_failed")
                return None
            name = resp.json().get("timeZone")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.bind(error=str(e)).warning("timezone_lookup_error")
            return None

        if isinstance(name, str) and is_valid_timezone(name.strip()):
            return name.strip()
        return None


def get_timezone_lookup() -> TimezoneLookup:
    """Build the lookup from settings."""
    settings = get_settings()
    return HTTPTimezoneLookup(
        url=settings.timezone_lookup_url,
        timeout_seconds=settings.timezone_lookup_timeout,
    )
