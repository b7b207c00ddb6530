"""
Process-local session registry.

Sessions expire on a sliding window independent of the JWT expiry, so a
session can be revoked server-side (logout, logout-everywhere) while its
signed token would otherwise still verify. State lives in this process only:
it is lost on restart and is not shared between workers, so run a single
worker or move the registry into a shared store with TTL keys.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from config import SESSION_SWEEP_SECONDS, SESSION_TIMEOUT_SECONDS
from security import new_session_id

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    sessionId: str
    userId: str
    email: str
    role: str
    lastActivity: float


class SessionRegistry:
    def __init__(self, timeout: float = SESSION_TIMEOUT_SECONDS, clock: Callable[[], float] = time.time):
        self.timeout = timeout
        self.clock = clock
        self._sessions: Dict[str, SessionInfo] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _expired(self, session: SessionInfo, now: float) -> bool:
        return now - session.lastActivity > self.timeout

    def create(self, user_id: str, email: str, role: str) -> str:
        session_id = new_session_id(user_id)
        with self._lock:
            self._sessions[session_id] = SessionInfo(
                sessionId=session_id,
                userId=user_id,
                email=email,
                role=role,
                lastActivity=self.clock(),
            )
        return session_id

    def validate(self, session_id: Optional[str]) -> bool:
        """Return True if the session is live, sliding its expiry forward."""
        if not session_id:
            return False
        now = self.clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if self._expired(session, now):
                del self._sessions[session_id]
                return False
            session.lastActivity = now
            return True

    def get(self, session_id: str) -> Optional[SessionInfo]:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def user_sessions(self, user_id: str) -> List[SessionInfo]:
        with self._lock:
            return [replace(s) for s in self._sessions.values() if s.userId == user_id]

    def invalidate(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def invalidate_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.userId == user_id]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


session_registry = SessionRegistry()


async def sweep_forever(registry: SessionRegistry = session_registry, interval: float = SESSION_SWEEP_SECONDS):
    while True:
        await asyncio.sleep(interval)
        removed = registry.sweep()
        if removed:
            logger.info("Swept %d expired sessions", removed)
