"""
Pending-session storage for the two-step password protocol.

A pending session is read at most once: ``get_and_clear`` removes it in the
same step that returns it, so a password reply can never be applied to two
requests. Expiry is judged by the caller at consumption time.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from pigeon.models.internal_models import PendingSession
from pigeon.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Capability interface for pending sessions keyed by normalized phone."""

    @abstractmethod
    async def get_and_clear(self, phone: str) -> Optional[PendingSession]:
        """Remove and return the pending session for ``phone``, if any."""

    @abstractmethod
    async def set(self, phone: str, session: PendingSession) -> None:
        """Store ``session`` for ``phone``, replacing any existing one."""

    @abstractmethod
    def lock(self, phone: str):
        """Async context manager serializing work on one phone."""


class InMemorySessionStore(SessionStore):
    """Process-local session store. Sessions do not survive a restart."""

    def __init__(self):
        self._sessions: Dict[str, PendingSession] = {}
        self._locks = KeyedLock()

    async def get_and_clear(self, phone: str) -> Optional[PendingSession]:
        # dict.pop has no await point, so no other task can observe the session in between
        session = self._sessions.pop(phone, None)
        if session is not None:
            logger.debug(f"Consumed pending {session.action.value} session for {phone}")
        return session

    async def set(self, phone: str, session: PendingSession) -> None:
        replaced = self._sessions.get(phone)
        self._sessions[phone] = session
        if replaced is not None:
            logger.info(f"Replaced pending {replaced.action.value} session for {phone} with {session.action.value}")

    @asynccontextmanager
    async def lock(self, phone: str) -> AsyncIterator[None]:
        async with self._locks.hold(phone):
            yield

    def __len__(self) -> int:
        return len(self._sessions)
