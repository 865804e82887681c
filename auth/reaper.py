"""
auth/reaper.py -- Background deletion of expired sessions.

Pure storage hygiene: SessionManager.validate() already refuses expired
sessions, so a stopped reaper only lets the sessions table grow.

The loop runs as one asyncio task for the life of the process (started and
cancelled by the FastAPI lifespan). Each sweep is a single idempotent DELETE
executed in a worker thread so the event loop never waits on the database.
A failed sweep is logged and the next tick tries again; cancellation between
or during sweeps leaves nothing half-done.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Callable

from auth.store import AccountStore

logger = logging.getLogger("keyward.auth.reaper")


class SessionReaper:
    def __init__(self, store: AccountStore, interval_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None

    def sweep(self) -> int:
        """Delete every session with expiry <= now. Returns the number removed."""
        removed = self.store.delete_expired_sessions(int(self._clock()))
        if removed:
            logger.info("Reaped %d expired session(s)", removed)
        return removed

    async def run(self) -> None:
        """Sweep, sleep, repeat -- until cancelled."""
        while True:
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Session sweep failed; retrying in %.0fs", self.interval_seconds)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name="session-reaper")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
