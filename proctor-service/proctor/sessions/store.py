"""
Keyed proctor session store.

    sessions         session_id   → ProctorSession
    active_by_user   user_id      → session_id of that user's active session
    violation_index  violation_id → session_id

Finished sessions stay for reviewer views until ``evict_finished`` drops them.

The store itself performs no awaits, so each method is atomic on the event
loop. Multi-step read-modify-write sequences that span awaits (collaborator
calls, event delivery) must hold ``session_lock`` / ``user_lock``.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from proctor.core.errors import ConflictError
from proctor.core.models import FLAG_PENDING, ProctorSession, SecurityViolation

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped again once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs:  dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class SessionStore:
    def __init__(self) -> None:
        self._sessions:        dict[str, ProctorSession] = {}
        self._active_by_user:  dict[str, str] = {}
        self._violation_index: dict[str, str] = {}
        self._session_locks = KeyedLocks()
        self._user_locks    = KeyedLocks()

    # ── Locks ───────────────────────────────────────────────────────────────

    def session_lock(self, session_id: str):
        return self._session_locks.hold(session_id)

    def user_lock(self, user_id: str):
        return self._user_locks.hold(user_id)

    # ── Reads ───────────────────────────────────────────────────────────────

    def get(self, session_id: str) -> ProctorSession | None:
        return self._sessions.get(session_id)

    def active_for_user(self, user_id: str) -> ProctorSession | None:
        session_id = self._active_by_user.get(user_id)
        return self._sessions.get(session_id) if session_id else None

    def find_violation(self, violation_id: str) -> tuple[ProctorSession, SecurityViolation] | None:
        session = self._sessions.get(self._violation_index.get(violation_id, ""))
        if session is None:
            return None
        for violation in session.violations:
            if violation.id == violation_id:
                return session, violation
        return None

    def all(self) -> list[ProctorSession]:
        """Every known session, in insertion order."""
        return list(self._sessions.values())

    def active(self) -> list[ProctorSession]:
        return [self._sessions[sid] for sid in self._active_by_user.values()]

    def pending_flags(self) -> list[ProctorSession]:
        """Terminated sessions whose attempt review flag has not been stored yet."""
        return [s for s in self._sessions.values() if s.metadata.get(FLAG_PENDING)]

    # ── Writes ──────────────────────────────────────────────────────────────

    def add(self, session: ProctorSession) -> None:
        if session.is_active and session.user_id in self._active_by_user:
            raise ConflictError("User already has an active proctoring session")
        self._sessions[session.id] = session
        if session.is_active:
            self._active_by_user[session.user_id] = session.id
        for violation in session.violations:
            self._violation_index[violation.id] = session.id

    def append_violation(self, session: ProctorSession, violation: SecurityViolation) -> None:
        session.violations.append(violation)
        self._violation_index[violation.id] = session.id

    def release_user(self, session: ProctorSession) -> None:
        """Drop ``session`` from the active index after it left the active state."""
        if self._active_by_user.get(session.user_id) == session.id:
            del self._active_by_user[session.user_id]

    def evict_finished(self, cutoff: datetime) -> int:
        """Drop finished sessions that ended before ``cutoff``. Returns how many."""
        stale = [
            s for s in self._sessions.values()
            if not s.is_active
            and s.end_time is not None and s.end_time < cutoff
            and not s.metadata.get(FLAG_PENDING)
        ]
        for session in stale:
            del self._sessions[session.id]
            for violation in session.violations:
                self._violation_index.pop(violation.id, None)
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)
