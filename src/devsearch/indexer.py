"""One sync cycle per project: fetch, embed, upsert, delete stale."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from devsearch.embedder.provider import Embedder
from devsearch.errors import EmbeddingError, SearchError
from devsearch.models.document import SearchDocument, SearchSource
from devsearch.models.search import SyncStats
from devsearch.source.base import DocumentSource
from devsearch.store.repository import SearchRepository

logger = logging.getLogger(__name__)


@dataclass
class IndexerConfig:
    """Tunables for a sync cycle.

    ``stale_grace`` widens the staleness cutoff below the cycle start;
    ``work_item_lookback`` restricts the work item fetch to recent changes
    (None fetches everything the source considers current).
    """

    embedding_batch_size: int = 10
    stale_grace: timedelta = timedelta(0)
    cleanup_stale: bool = True
    work_item_lookback: timedelta | None = None


class SearchIndexer:
    """Keeps the search store in step with one upstream project at a time."""

    def __init__(
        self,
        source: DocumentSource,
        repository: SearchRepository,
        embedder: Embedder | None = None,
        config: IndexerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize with collaborators; no embedder means lexical-only documents."""
        self.source = source
        self.repository = repository
        self.embedder = embedder
        self.config = config or IndexerConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def sync_project(self, organization: str, project: str) -> SyncStats:
        """Run one full sync cycle for ``organization/project``.

        A fetch failure aborts the cycle with one error and no deletions.
        A document whose embedding fails is still stored, without a vector,
        so it stays lexically searchable and is not swept as stale. Write
        failures skip the affected document only. With a work item lookback
        the fetch is partial, so only pull requests are swept.
        """
        stats = SyncStats()
        cycle_start = self._clock()
        since = (
            cycle_start - self.config.work_item_lookback
            if self.config.work_item_lookback is not None
            else None
        )

        try:
            async with asyncio.TaskGroup() as tg:
                pr_task = tg.create_task(self.source.fetch_pull_requests(organization, project))
                wi_task = tg.create_task(
                    self.source.fetch_work_items(organization, project, since)
                )
        except Exception:
            logger.warning(
                "Fetch failed for %s/%s, cycle aborted", organization, project, exc_info=True
            )
            stats.errors += 1
            return stats

        pr_docs = await self._embed_documents([pr.to_document() for pr in pr_task.result()], stats)
        wi_docs = await self._embed_documents([wi.to_document() for wi in wi_task.result()], stats)

        stats.prs_indexed = await self.repository.upsert_documents(pr_docs)
        stats.work_items_indexed = await self.repository.upsert_documents(wi_docs)
        # Failed writes are logged by the repository and counted here
        stats.errors += len(pr_docs) - stats.prs_indexed
        stats.errors += len(wi_docs) - stats.work_items_indexed

        if self.config.cleanup_stale:
            cutoff = cycle_start - self.config.stale_grace
            try:
                stats.documents_deleted = await self.repository.delete_stale_documents(
                    cutoff,
                    organization=organization,
                    project=project,
                    source_type=SearchSource.PULL_REQUEST if since is not None else None,
                )
            except SearchError:
                logger.warning(
                    "Stale cleanup failed for %s/%s", organization, project, exc_info=True
                )
                stats.errors += 1

        logger.info(
            "Synced %s/%s: %d PRs, %d work items, %d deleted, %d errors",
            organization,
            project,
            stats.prs_indexed,
            stats.work_items_indexed,
            stats.documents_deleted,
            stats.errors,
        )
        return stats

    async def _embed_documents(
        self, docs: list[SearchDocument], stats: SyncStats
    ) -> list[SearchDocument]:
        """Attach embeddings in provider batches.

        A failed batch is retried one document at a time; documents that
        still fail are counted as errors and kept without an embedding.
        """
        if self.embedder is None or not docs:
            return docs

        size = max(1, self.config.embedding_batch_size)
        embedded: list[SearchDocument] = []
        for start in range(0, len(docs), size):
            batch = docs[start : start + size]
            texts = [doc.embedding_text for doc in batch]
            try:
                vectors = await self.embedder.embed_batch(texts)
                if len(vectors) != len(batch):
                    raise EmbeddingError(
                        f"Embedder returned {len(vectors)} vectors for {len(batch)} texts"
                    )
            except EmbeddingError:
                logger.warning("Batch embedding failed, retrying per document", exc_info=True)
                embedded.extend(await self._embed_individually(batch, stats))
                continue
            embedded.extend(
                doc.model_copy(update={"embedding": vec})
                for doc, vec in zip(batch, vectors, strict=True)
            )
        return embedded

    async def _embed_individually(
        self, docs: list[SearchDocument], stats: SyncStats
    ) -> list[SearchDocument]:
        assert self.embedder is not None
        embedded: list[SearchDocument] = []
        for doc in docs:
            try:
                vec = await self.embedder.embed(doc.embedding_text)
            except EmbeddingError:
                logger.warning(
                    "Embedding failed for %s, storing without vector", doc.source_id, exc_info=True
                )
                stats.errors += 1
                embedded.append(doc.model_copy(update={"embedding": None}))
                continue
            embedded.append(doc.model_copy(update={"embedding": vec}))
        return embedded
