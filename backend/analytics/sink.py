from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from typing import Callable

from ..search.models import SearchLogEntry
from ..storage import CatalogueStore, get_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalyticsConfig:
    enabled: bool = os.getenv("SEARCH_ANALYTICS_ENABLED", "true").lower() not in ("0", "false", "no")
    queue_size: int = int(os.getenv("SEARCH_ANALYTICS_QUEUE_SIZE", "1000"))


DEFAULT_ANALYTICS_CONFIG = AnalyticsConfig()


class SearchAnalyticsSink:
    """Fire-and-forget recorder of search log entries.

    ``record`` never blocks and never raises: entries go into a bounded queue
    that a background task drains into the store. When the queue is full the
    entry is dropped; when a write fails it is logged and discarded.
    """

    def __init__(
        self,
        store_provider: Callable[[], CatalogueStore] = get_store,
        config: AnalyticsConfig = DEFAULT_ANALYTICS_CONFIG,
    ) -> None:
        self.config = config
        self._store_provider = store_provider
        self._queue: asyncio.Queue[SearchLogEntry] | None = None
        self._worker: asyncio.Task | None = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if not self.config.enabled or self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._worker = asyncio.create_task(self._run(self._queue), name="search-analytics")
        logger.info("Search analytics sink started (queue_size=%d)", self.config.queue_size)

    async def stop(self) -> None:
        """Flush pending entries, then stop the worker."""
        if self._worker is None:
            return
        await self.drain()
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        self._queue = None
        logger.info("Search analytics sink stopped")

    async def drain(self) -> None:
        if self._queue is not None and self.running:
            await self._queue.join()

    def record(self, entry: SearchLogEntry) -> None:
        if not self.config.enabled:
            return
        if self._queue is None:
            logger.debug("Search analytics sink not running; dropping entry for %r", entry.query)
            return
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Search analytics queue full; dropping entry for %r", entry.query)

    async def _run(self, queue: asyncio.Queue[SearchLogEntry]) -> None:
        while True:
            entry = await queue.get()
            try:
                await self._write(entry)
            finally:
                queue.task_done()

    async def _write(self, entry: SearchLogEntry) -> None:
        try:
            await self._store_provider().record_search(entry)
        except Exception:
            # Analytics must never affect the search path
            logger.warning("Failed to record search analytics for %r", entry.query, exc_info=True)


_sink: SearchAnalyticsSink | None = None


def get_sink() -> SearchAnalyticsSink:
    global _sink
    if _sink is None:
        _sink = SearchAnalyticsSink()
    return _sink


def set_sink(sink: SearchAnalyticsSink | None) -> None:
    global _sink
    _sink = sink
