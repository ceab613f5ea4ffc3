"""Time-windowed cache of recently seen inbound update ids.

Telegram re-delivers a webhook update when the previous attempt was not
acknowledged in time. This cache drops such repeats at the transport edge.
Delivery correctness does not depend on it: the ledger guarantees that.
"""

from collections import OrderedDict
from datetime import datetime, timedelta

from app.core.datetime_utils import utc_now


class UpdateDeduplicator:
    """Bounded set of update ids, each remembered for `ttl_seconds`."""

    def __init__(self, ttl_seconds: int = 600, max_entries: int = 10_000) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._seen: OrderedDict[int, datetime] = OrderedDict()

    def check_and_remember(self, update_id: int, now: datetime | None = None) -> bool:
        """Return True the first time an id is seen within the window."""
        now = now or utc_now()
        self._evict(now)

        if update_id in self._seen:
            return False

        self._seen[update_id] = now
        while len(self._seen) > self._max_entries:
            self._seen.popitem(last=False)
        return True

    def __len__(self) -> int:
        return len(self._seen)

    def _evict(self, now: datetime) -> None:
        cutoff = now - self._ttl
        while self._seen:
            oldest_id, seen_at = next(iter(self._seen.items()))
            if seen_at > cutoff:
                break
            self._seen.pop(oldest_id)
