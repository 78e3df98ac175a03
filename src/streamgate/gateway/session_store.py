"""
gateway/session_store.py — Session Registry

Owns the mapping session_id → Session for every open event stream.
Uses asyncio.Lock so create/get/remove on the same id are linearizable
across concurrent request handlers: once remove() returns, get() for that
id returns None.

The registry owns the mapping only; each Session owns its own stream.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, Optional

from streamgate.gateway.session import Session
from streamgate.observability.logger import get_logger

log = get_logger(__name__)

SessionFactory = Callable[[str], Session]


class SessionRegistry:
    """
    Async-safe session registry for the gateway.

    Shared by every connection handler. Only the GET handler that created
    a session removes it, so in practice each key has a single writer.
    """

    def __init__(self, id_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._id_factory = id_factory

    async def create(self, factory: SessionFactory) -> Session:
        """Generate a fresh id, build the session with `factory(id)` and register it."""
        async with self._lock:
            session_id = self._id_factory()
            while session_id in self._sessions:
                session_id = self._id_factory()
            session = factory(session_id)
            self._sessions[session_id] = session
        log.info("session_store.created", session_id=session_id)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        """Get a session by ID, or None if not registered."""
        async with self._lock:
            return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> bool:
        """Remove a session. Returns True if it existed; removing twice is a no-op."""
        async with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            log.info("session_store.removed", session_id=session_id)
        return removed

    async def list_sessions(self) -> list[str]:
        """Return all registered session IDs."""
        async with self._lock:
            return list(self._sessions.keys())

    async def get_count(self) -> int:
        """Return the number of registered sessions."""
        async with self._lock:
            return len(self._sessions)

    async def snapshot(self) -> list[dict[str, Any]]:
        """Return Session.info() for every registered session."""
        async with self._lock:
            sessions = list(self._sessions.values())
        return [s.info() for s in sessions]

    @property
    def count(self) -> int:
        """Synchronous count — use only from non-async contexts (e.g. tests)."""
        return len(self._sessions)
