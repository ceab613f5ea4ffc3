"""HTTP content provider - delegates generation to an external service."""

import re
from datetime import date

import httpx

from app.core.logging import get_logger

from .base import ContentGenerationError, ContentMode, ContentProvider, ContentRateLimitError

logger = get_logger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"rate\s*limit", re.IGNORECASE)


class HTTPContentProvider(ContentProvider):
    """
    Calls the content service with the date, timezone and mode.

    The service answers `{"text": "..."}`. HTTP 429, or an error body that
    mentions a rate limit, surfaces as ContentRateLimitError.
    """

    provider_name = "http"

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout_seconds: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout_seconds
        self._transport = transport

    async def generate(self, target_date: date, timezone: str, mode: ContentMode) -> str:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {"date": target_date.isoformat(), "timezone": timezone, "mode": mode.value}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.bind(error=str(e), mode=mode.value).warning("content_service_unreachable")
            raise ContentGenerationError(f"Content service unreachable: {e}") from e

        if resp.status_code == 429:
            raise ContentRateLimitError("Content service rate limit")

        if resp.status_code >= 400:
            if RATE_LIMIT_PATTERN.search(resp.text):
                raise ContentRateLimitError("Content service rate limit")
            raise ContentGenerationError(
                f"Content service failed: HTTP {resp.status_code} {resp.text[:200]}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ContentGenerationError("Content service returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ContentGenerationError("Content service returned an unexpected payload")

        error = data.get("error")
        error_message = error.get("message", "") if isinstance(error, dict) else str(error or "")
        if error_message and RATE_LIMIT_PATTERN.search(error_message):
            raise ContentRateLimitError("Content service rate limit")

        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ContentGenerationError("Content service returned empty text")
        return text.strip()
