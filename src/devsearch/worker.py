"""Background worker that drives the indexer on a fixed interval."""

import asyncio
import logging
from collections.abc import Callable, Iterable

from devsearch.config import ProjectRef
from devsearch.indexer import SearchIndexer
from devsearch.models.search import SyncStats

logger = logging.getLogger(__name__)


class IndexWorker:
    """Syncs every configured project, one after another, each tick.

    ``projects`` is called at the start of every tick so configuration
    changes are picked up without a restart. Projects are never synced
    concurrently, which keeps embedding-provider load predictable and
    means no two cycles touch the same project at once.
    """

    def __init__(
        self,
        indexer: SearchIndexer,
        projects: Callable[[], Iterable[ProjectRef]],
        interval: float = 900.0,
    ) -> None:
        self.indexer = indexer
        self.projects = projects
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    async def run_once(self) -> SyncStats:
        """Sync each project once and return the aggregated stats."""
        total = SyncStats()
        snapshot = list(self.projects())
        for ref in snapshot:
            try:
                stats = await self.indexer.sync_project(ref.organization, ref.project)
            except Exception:
                logger.error("Sync failed for %s", ref, exc_info=True)
                total.errors += 1
                continue
            total.merge(stats)

        logger.info(
            "Index tick over %d projects: %d indexed, %d deleted, %d errors",
            len(snapshot),
            total.total_indexed,
            total.documents_deleted,
            total.errors,
        )
        return total

    async def run_forever(self) -> None:
        """Tick until cancelled. The first tick happens one full interval after start."""
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    def start(self) -> None:
        """Start the background task if it is not already running."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="devsearch-index-worker")

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
