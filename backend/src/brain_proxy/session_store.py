"""In-memory session store: session id -> ordered conversation history."""

from __future__ import annotations

import asyncio
import itertools
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .models import Turn


class SessionStore:
    """Keyed map of session histories.

    Every read and write happens under one lock that is never held across an
    upstream call. Sessions are created lazily on first read and live until
    ``reset``.

    Each live session carries a version that changes whenever the session is
    reset and recreated. ``snapshot`` hands it out with the history and
    ``commit`` drops a write whose version is stale, so a reset that lands
    while a turn is in flight is not undone.

    With ``serialize=True``, ``turn_guard`` hands out one ``asyncio.Lock`` per
    session so a whole read-run-write turn is exclusive. Without it two
    concurrent turns on the same id race and the last writer wins.
    """

    def __init__(self, serialize: bool = True) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, list[Turn]] = {}
        self._versions: dict[str, int] = {}
        self._clock = itertools.count(1)
        self._turn_locks: dict[str, asyncio.Lock] = {}
        self.serialize = serialize

    def _ensure(self, session_id: str) -> list[Turn]:
        if session_id not in self._sessions:
            self._sessions[session_id] = []
            self._versions[session_id] = next(self._clock)
        return self._sessions[session_id]

    def history(self, session_id: str) -> list[Turn]:
        """Return a copy of the session history (empty for unknown ids)."""
        with self._lock:
            return list(self._ensure(session_id))

    def snapshot(self, session_id: str) -> tuple[list[Turn], int]:
        """History copy plus the version to hand back to ``commit``."""
        with self._lock:
            return list(self._ensure(session_id)), self._versions[session_id]

    def commit(self, session_id: str, turns: list[Turn], version: int | None = None) -> bool:
        """Replace the stored history after a completed exchange.

        With ``version`` set, the write is skipped (and False returned) when
        the session was reset since that version was read.
        """
        with self._lock:
            if version is not None and self._versions.get(session_id) != version:
                return False
            self._ensure(session_id)
            self._sessions[session_id] = list(turns)
            return True

    def reset(self, session_id: str | None = None) -> int:
        """Clear one session, or all of them. Returns how many were cleared."""
        with self._lock:
            if session_id is None:
                cleared = len(self._sessions)
                self._sessions = {}
                self._versions = {}
                self._turn_locks = {sid: lock for sid, lock in self._turn_locks.items() if lock.locked()}
                return cleared
            self._versions.pop(session_id, None)
            lock = self._turn_locks.get(session_id)
            if lock is not None and not lock.locked():
                del self._turn_locks[session_id]
            return 1 if self._sessions.pop(session_id, None) is not None else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        with self._lock:
            lock = self._turn_locks.get(session_id)
            if lock is None:
                lock = self._turn_locks[session_id] = asyncio.Lock()
            return lock

    @property
    def turn_lock_count(self) -> int:
        with self._lock:
            return len(self._turn_locks)

    @asynccontextmanager
    async def turn_guard(self, session_id: str) -> AsyncIterator[None]:
        """Exclusive section spanning one full turn on ``session_id``."""
        if not self.serialize:
            yield
            return
        async with self._turn_lock(session_id):
            yield
