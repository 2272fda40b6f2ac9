"""Periodic sync loop running as a cancellable asyncio task."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sessionvault import config
from sessionvault.mirror.sync_engine import SyncEngine
from sessionvault.models import SyncStatus
from sessionvault.scanner import IndexCache

logger = logging.getLogger("sessionvault.scheduler")


async def run_initial_sync(engine: SyncEngine, index_cache: IndexCache) -> SyncStatus:
    """One startup cycle; the index is rebuilt lazily on the next read."""
    if engine.needs_initial_sync():
        logger.info("No sync state found; running initial sync")
    status = await engine.run_sync()
    index_cache.invalidate()
    logger.info(
        "Initial sync done: %d files tracked, %d errors",
        status.totalFiles,
        len(status.errors),
    )
    return status


class SyncScheduler:
    """Owns at most one background task that syncs every ``interval_seconds``."""

    def __init__(
        self,
        engine: SyncEngine,
        index_cache: IndexCache,
        interval_seconds: int = config.SYNC_INTERVAL_SECONDS,
    ):
        self.engine = engine
        self.index_cache = index_cache
        self.interval_seconds = max(interval_seconds, config.MIN_SYNC_INTERVAL_SECONDS)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: int | None = None) -> None:
        if self.is_running:
            logger.warning("Sync scheduler already running")
            return
        if interval_seconds is not None:
            self.interval_seconds = max(interval_seconds, config.MIN_SYNC_INTERVAL_SECONDS)
        self._task = asyncio.create_task(self._loop(self.interval_seconds))
        logger.info("Sync scheduler started (every %ds)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Sync scheduler stopped")

    async def restart(self, interval_seconds: int) -> None:
        await self.stop()
        self.start(interval_seconds)

    async def run_once(self) -> SyncStatus:
        status = await self.engine.run_sync()
        self.index_cache.invalidate()
        return status

    async def _loop(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Scheduled sync failed: %s", e)
