"""
Session janitor: periodically evicts pairing sessions that never finished.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .lifecycle import PairingLifecycle
from .session import SessionRegistry

logger = logging.getLogger(__name__)


class SessionJanitor:
    """Sweeps the registry every interval and expires stale sessions."""

    def __init__(
        self,
        lifecycle: PairingLifecycle,
        registry: SessionRegistry,
        max_age_seconds: float = 600.0,
        interval_seconds: float = 60.0,
    ):
        self.lifecycle = lifecycle
        self.registry = registry
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="session-janitor")
        logger.info(
            f"Session janitor started (interval={self.interval_seconds}s, "
            f"max_age={self.max_age_seconds}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        # wait() never raises, so cancelling stop() itself still propagates
        await asyncio.wait({task})
        logger.info("Session janitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Session sweep failed")

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Expire every stale session; returns how many were evicted."""
        evicted = 0
        for session in self.registry.expired(self.max_age_seconds, now):
            try:
                await self.lifecycle.expire(session)
                evicted += 1
                logger.info(f"Cleaned up expired session: {session.id}")
            except Exception as e:
                logger.error(f"Error cleaning up session {session.id}: {e}")
        return evicted
