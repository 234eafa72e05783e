"""At most one generation in flight per session.

Two layers: a per-session asyncio.Lock stops a second request inside this
process, and the compare-and-set on `Session.generation_status` in storage is
the authoritative check that also holds across processes sharing a data dir.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from statemachine.exceptions import TransitionNotAllowed

from world_tavern.session.fsm import GenerationFSM
from world_tavern.storage import Storage

logger = logging.getLogger(__name__)


class GenerationInProgress(RuntimeError):
    """Raised when a session already has a generation running. Retryable."""

    retryable = True

    def __init__(self, session_id: str) -> None:
        super().__init__(f"A generation is already in progress for session {session_id}")
        self.session_id = session_id


class GenerationGuard:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._locks: dict[str, asyncio.Lock] = {}
        self._aborts: dict[str, asyncio.Event] = {}

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        if lock is not None and lock.locked():
            return True
        session = self._storage.get_session(session_id)
        return session is not None and session.generation_status == "generating"

    def ensure_idle(self, session_id: str) -> None:
        """Reject timeline mutations while a generation is running."""
        if self.is_busy(session_id):
            raise GenerationInProgress(session_id)

    def _transition(self, session_id: str, event: str) -> bool:
        session = self._storage.require_session(session_id)
        fsm = GenerationFSM(session)
        before = fsm.status
        try:
            fsm.send(event)
        except TransitionNotAllowed:
            return False
        return self._storage.compare_and_set_status(session_id, before, fsm.status)

    @asynccontextmanager
    async def checkout(self, session_id: str) -> AsyncIterator[asyncio.Event]:
        """Hold the session's generation slot; yields the abort flag."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if lock.locked():
            raise GenerationInProgress(session_id)
        try:
            async with lock:
                if not self._transition(session_id, "begin"):
                    raise GenerationInProgress(session_id)
                abort = asyncio.Event()
                self._aborts[session_id] = abort
                try:
                    yield abort
                finally:
                    self._aborts.pop(session_id, None)
                    if self._storage.get_session(session_id) is not None:
                        self._transition(session_id, "finish")
        finally:
            if not lock.locked():
                self._locks.pop(session_id, None)

    def abort(self, session_id: str) -> bool:
        """Ask the in-flight generation to stop. False when nothing is running."""
        abort = self._aborts.get(session_id)
        if abort is None:
            return False
        logger.info("Abort requested for session %s", session_id)
        abort.set()
        return True
