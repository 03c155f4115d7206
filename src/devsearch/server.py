"""FastMCP server with lifespan management and tool registration."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastmcp import FastMCP

from devsearch.config import Settings
from devsearch.db.connection import create_connection
from devsearch.embedder import create_embedder
from devsearch.indexer import IndexerConfig, SearchIndexer
from devsearch.search.parser import QueryParser
from devsearch.service import SearchService
from devsearch.source.ado import AzureDevOpsSource
from devsearch.store.repository import DatabaseSearchRepository
from devsearch.tools.search import register_search_tools
from devsearch.worker import IndexWorker


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Open the store, wire the read and write paths, and start the index worker."""
    settings = Settings.from_env()

    # Configure logging to stderr (stdout is MCP stdio transport)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    if settings.database_url:
        logger.info("Opening search store at %s", settings.database_url.split("@")[-1])
    else:
        logger.info("Opening search store at %s", settings.db_path)
    db = await create_connection(
        settings.db_path,
        database_url=settings.database_url,
        embedding_dim=settings.embedding_dim,
    )

    embedder = create_embedder(settings)
    if embedder is not None:
        logger.info("Embedding provider: %s", settings.embedding_provider)
    else:
        logger.warning("No embedding provider, lexical-only search")

    repository = DatabaseSearchRepository(
        db,
        rrf_k=settings.rrf_k,
        candidate_multiplier=settings.candidate_multiplier,
    )
    service = SearchService(
        repository,
        embedder=embedder,
        parser=QueryParser(project_aliases=settings.project_aliases),
    )

    source: AzureDevOpsSource | None = None
    worker: IndexWorker | None = None
    if settings.ado_pat and settings.projects:
        source = AzureDevOpsSource(
            settings.ado_pat,
            base_url=settings.ado_url,
            fetch_concurrency=settings.fetch_concurrency,
            retention_days=settings.retention_days,
        )
        indexer = SearchIndexer(
            source,
            repository,
            embedder=embedder,
            config=IndexerConfig(
                embedding_batch_size=settings.embedding_batch_size,
                stale_grace=timedelta(hours=settings.stale_grace_hours),
            ),
        )
        worker = IndexWorker(indexer, lambda: settings.projects, interval=settings.index_interval)
        worker.start()
        logger.info(
            "Index worker started for %d projects every %.0fs",
            len(settings.projects),
            settings.index_interval,
        )
    else:
        logger.warning("DEVSEARCH_ADO_PAT or DEVSEARCH_PROJECTS not set, indexing disabled")

    try:
        yield {
            "db": db,
            "repository": repository,
            "service": service,
            "embedder": embedder,
            "worker": worker,
        }
    finally:
        if worker is not None:
            await worker.stop()
        if source is not None:
            await source.close()
        if embedder is not None:
            await embedder.close()
        await db.close()
        logger.info("Search store closed")


_INSTRUCTIONS = """\
Searches pull requests and work items indexed from Azure DevOps.

- search: free-text query with automatic filter extraction. Mention "PRs" or \
"work items", item types ("bugs", "tasks", "user stories"), "priority 1", \
statuses ("active", "closed"), dates ("last week", "after 2024-01-01"), or \
key:value filters (author:, assignee:, repo:, project:, org:, status:, type:). \
Quote a phrase to match it exactly.
- search_stats: how many documents of each kind are indexed.
"""


def create_server() -> FastMCP:
    """Create and configure the MCP server with all tools."""
    mcp = FastMCP(
        "devsearch",
        instructions=_INSTRUCTIONS,
        lifespan=lifespan,
    )

    register_search_tools(mcp)

    return mcp
