"""Registry of live sessions.

The manager is the only mutable state shared between connections. All
additions and removals go through one asyncio lock; closing every
session happens outside the lock because each session unregisters
itself as it closes.
"""

from __future__ import annotations

import asyncio
import logging

from termlink.domain.models import SessionInfo
from termlink.endpoint.session import Session

logger = logging.getLogger(__name__)


class SessionManager:
    """Tracks the sessions of one listener."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def snapshot(self) -> list[SessionInfo]:
        return [s.info() for s in self._sessions.values()]

    async def add(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.id] = session
            logger.debug("Registered session %s (%d active)", session.id, len(self._sessions))

    async def remove(self, session: Session) -> None:
        async with self._lock:
            if self._sessions.pop(session.id, None) is not None:
                logger.debug("Unregistered session %s (%d active)", session.id, len(self._sessions))

    async def close_all(self) -> None:
        """Close every registered session and wait for all of them."""
        async with self._lock:
            sessions = list(self._sessions.values())
        if not sessions:
            return
        logger.info("Closing %d session(s)", len(sessions))
        await asyncio.gather(*(s.close() for s in sessions))
        async with self._lock:
            for session in sessions:
                self._sessions.pop(session.id, None)
