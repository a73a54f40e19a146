"""Short-lived memory of processed webhook event ids."""

import logging
import time
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class ProcessedEventStore:
    """
    Remembers event ids for a fixed window so redeliveries are processed once.

    Eviction is lazy: expired ids are swept whenever a new id is checked.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: Dict[str, float] = {}

    def _evict_expired(self, now: float) -> None:
        expired = [event_id for event_id, seen_at in self._seen.items() if now - seen_at >= self.ttl_seconds]
        for event_id in expired:
            del self._seen[event_id]

    def mark_if_new(self, event_id: str) -> bool:
        """
        Record ``event_id`` and report whether this is its first delivery.

        Check and insert happen without an await point, so two concurrent
        deliveries of the same id cannot both be treated as new.

        Returns:
            True for a first delivery, False for a duplicate inside the window
        """
        now = self._clock()
        self._evict_expired(now)

        if event_id in self._seen:
            logger.info(f"Duplicate event ignored: {event_id}")
            return False

        self._seen[event_id] = now
        return True

    def __contains__(self, event_id: str) -> bool:
        seen_at = self._seen.get(event_id)
        return seen_at is not None and self._clock() - seen_at < self.ttl_seconds

    def __len__(self) -> int:
        return len(self._seen)
