"""Per-phone cooldown for faucet grants."""

import logging
import math
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional

from pigeon.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class FundRateLimiter:
    """
    Tracks the last successful grant per phone.

    A phone may be funded again once ``cooldown_seconds`` have fully elapsed.
    Callers hold ``lock(phone)`` across check, transfer and record so two
    concurrent requests from one phone cannot both pass the check.
    """

    def __init__(self, cooldown_seconds: float = 24 * 60 * 60, clock: Callable[[], float] = time.time):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_grant: Dict[str, float] = {}
        self._locks = KeyedLock()

    @asynccontextmanager
    async def lock(self, phone: str) -> AsyncIterator[None]:
        async with self._locks.hold(phone):
            yield

    def remaining_seconds(self, phone: str) -> Optional[float]:
        """Seconds left before ``phone`` may be funded, or None if allowed now."""
        last = self._last_grant.get(phone)
        if last is None:
            return None
        elapsed = self._clock() - last
        if elapsed >= self.cooldown_seconds:
            return None
        return self.cooldown_seconds - elapsed

    def record_grant(self, phone: str) -> None:
        self._last_grant[phone] = self._clock()
        logger.debug(f"Recorded fund grant for {phone}")


def describe_wait(seconds: float) -> str:
    """Human wording for a remaining wait, rounded up to whole hours or minutes."""
    if seconds >= 3600:
        hours = math.ceil(seconds / 3600)
        return f"~{hours} hour{'' if hours == 1 else 's'}"
    minutes = max(1, math.ceil(seconds / 60))
    return f"~{minutes} minute{'' if minutes == 1 else 's'}"
